"""Configuration loading utilities."""

import json
import os
import shutil
from pathlib import Path
from typing import Any

from loguru import logger

from cyberbot.config.schema import Config
from cyberbot.utils.pid_lock import PIDLock


def get_config_path() -> Path:
    """Get the default configuration file path."""
    env_path = os.environ.get("CYBERBOT_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".cyberbot" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            data = read_raw(path)
            return Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")

    return Config()


def read_raw(path: Path) -> dict[str, Any]:
    """Read the config file as plain JSON, keys untouched."""
    # utf-8-sig tolerates BOM-prefixed JSON written by some editors
    with open(path, encoding="utf-8-sig") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("config root must be a JSON object")
    return data


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file with PID-based locking and atomic writes.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    write_raw(path, convert_to_camel(config.model_dump()))


def write_raw(path: Path, data: dict[str, Any]) -> None:
    """Atomically replace the config file, keeping a .bak of the previous one."""
    path.parent.mkdir(parents=True, exist_ok=True)

    with PIDLock(path):
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        if path.exists():
            shutil.copy2(path, path.with_suffix(".json.bak"))
        os.replace(temp_path, path)


def update_plugin_lists(path: Path, name: str, kind: str, enabled: bool) -> bool:
    """
    Add or remove one plugin name in ``plugins.<kind>`` of the raw config file.

    Every other key, and the order of the remaining names, is preserved.
    Returns True when the file changed.

    Raises:
        OSError, ValueError: when the file cannot be read or written.
    """
    data = read_raw(path) if path.exists() else {}

    plugins = data.get("plugins")
    if not isinstance(plugins, dict):
        plugins = {}
        data["plugins"] = plugins

    names = plugins.get(kind)
    if not isinstance(names, list):
        names = []
        plugins[kind] = names

    if enabled:
        if name in names:
            return False
        names.append(name)
    else:
        if name not in names:
            return False
        plugins[kind] = [n for n in names if n != name]

    write_raw(path, data)
    return True


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
