"""
Plugin unit discovery and import.

A plugin unit is a directory under one of the plugin search directories:

    plugins/
        weather/
            main.py        # or a pre-built main.pyc, preferred when both exist
            helpers.py     # importable from main as `from . import helpers`

The unit is imported as a package named ``cyberbot_plugins.<name>`` and must
export its definition, either as ``plugin = define_plugin(...)`` or as
module-level ``name`` and ``setup``.
"""

import ast
import importlib
import importlib.util
import os
import sys
import types
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from cyberbot.plugins.errors import InvalidContractError, PluginInitError

MODULE_PREFIX = "cyberbot_plugins"
COMPILED_ENTRY = "main.pyc"
SOURCE_ENTRY = "main.py"
DEFAULT_VERSION = "0.1.0"


class Artifact(StrEnum):
    COMPILED = "compiled"
    SOURCE = "source"


@dataclass(frozen=True)
class PluginUnit:
    """A discoverable plugin directory."""
    name: str
    path: Path
    artifact: Artifact

    @property
    def entry(self) -> Path:
        return self.path / (COMPILED_ENTRY if self.artifact == Artifact.COMPILED else SOURCE_ENTRY)

    @property
    def module_key(self) -> str:
        return module_key(self.name)


@dataclass(frozen=True)
class PluginDefinition:
    """What a unit exports: identity plus its setup callable."""
    name: str
    setup: Callable[..., Any]
    version: str = DEFAULT_VERSION
    description: str = ""


def define_plugin(
    name: str,
    setup: Callable[..., Any],
    version: str | None = None,
    description: str | None = None,
) -> PluginDefinition:
    """
    Declare a plugin.

    Usage (in ``plugins/hello/main.py``):
        async def setup(ctx):
            ctx.handle("message", on_message)

        plugin = define_plugin("hello", setup, version="1.0.0")
    """
    return PluginDefinition(
        name=name,
        setup=setup,
        version=version or DEFAULT_VERSION,
        description=description or "",
    )


def module_key(name: str) -> str:
    return f"{MODULE_PREFIX}.{name}"


def is_valid_name(name: str) -> bool:
    """Plugin names are plain directory names; anything path-like never resolves."""
    if not name or name.startswith("."):
        return False
    if "/" in name or "\\" in name or os.sep in name:
        return False
    return name not in (".", "..")


class PluginLoader:
    """Resolves, imports and validates plugin units across search directories."""

    def __init__(self, dirs: list[Path]):
        self.dirs = [Path(d) for d in dirs]

    def find(self, name: str) -> PluginUnit | None:
        """Resolve a unit by name; the first directory containing it wins."""
        if not is_valid_name(name):
            return None
        for directory in self.dirs:
            unit = self._unit_at(directory / name)
            if unit:
                return unit
        return None

    def discover(self) -> list[PluginUnit]:
        """List every unit in the search directories, shadowed names excluded."""
        found: dict[str, PluginUnit] = {}
        for directory in self.dirs:
            if not directory.is_dir():
                continue
            for item in sorted(directory.iterdir()):
                if item.name in found or not is_valid_name(item.name):
                    continue
                unit = self._unit_at(item)
                if unit:
                    found[item.name] = unit
        return list(found.values())

    @staticmethod
    def _unit_at(path: Path) -> PluginUnit | None:
        if not path.is_dir():
            return None
        if (path / COMPILED_ENTRY).is_file():
            return PluginUnit(path.name, path, Artifact.COMPILED)
        if (path / SOURCE_ENTRY).is_file():
            return PluginUnit(path.name, path, Artifact.SOURCE)
        return None

    def import_unit(self, unit: PluginUnit) -> types.ModuleType:
        """
        Import a unit afresh.

        Raises:
            PluginInitError: if executing the unit's module raised.
        """
        invalidate(unit.name, unit.path)
        _ensure_namespace()

        spec = importlib.util.spec_from_file_location(
            unit.module_key,
            str(unit.entry),
            submodule_search_locations=[str(unit.path)],
        )
        if spec is None or spec.loader is None:
            raise PluginInitError(f"Could not create module spec for {unit.entry}", unit.name)

        module = importlib.util.module_from_spec(spec)
        sys.modules[spec.name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            purge_modules(unit.module_key)
            raise PluginInitError(f"Failed to import plugin {unit.name}: {e}", unit.name) from e
        return module

    @staticmethod
    def read_definition(module: types.ModuleType, unit: PluginUnit) -> PluginDefinition:
        """
        Extract the exported definition.

        Raises:
            InvalidContractError: missing identity or setup, or a name that does
                not match the unit directory.
        """
        exported = getattr(module, "plugin", None)
        if isinstance(exported, PluginDefinition):
            definition = exported
        else:
            name = getattr(module, "name", None)
            setup = getattr(module, "setup", None)
            if not isinstance(name, str) or not name:
                raise InvalidContractError(f"Plugin {unit.name} does not export a name", unit.name)
            definition = define_plugin(
                name,
                setup,
                version=getattr(module, "version", None),
                description=getattr(module, "description", None),
            )

        if not callable(definition.setup):
            raise InvalidContractError(f"Plugin {unit.name} does not export a setup function", unit.name)
        if definition.name != unit.name:
            raise InvalidContractError(
                f"Plugin name '{definition.name}' does not match its directory '{unit.name}'",
                unit.name,
            )
        return definition


def _ensure_namespace() -> None:
    if MODULE_PREFIX not in sys.modules:
        namespace = types.ModuleType(MODULE_PREFIX)
        namespace.__path__ = []
        sys.modules[MODULE_PREFIX] = namespace


def purge_modules(key: str) -> int:
    """Drop a module and all of its submodules from ``sys.modules``."""
    stale = [m for m in sys.modules if m == key or m.startswith(key + ".")]
    for m in stale:
        sys.modules.pop(m, None)
    return len(stale)


def invalidate(name: str, path: Path | None = None) -> None:
    """
    Forget everything cached for a unit so the next import reads fresh code.

    Removes its modules from ``sys.modules`` and deletes interpreter bytecode
    caches for every source file under the unit directory.
    """
    purge_modules(module_key(name))
    if path is not None and Path(path).is_dir():
        for source in Path(path).rglob("*.py"):
            try:
                Path(importlib.util.cache_from_source(str(source))).unlink(missing_ok=True)
            except (NotImplementedError, OSError) as e:
                logger.debug(f"Could not drop bytecode cache for {source}: {e}")
    importlib.invalidate_caches()


def purge_plugin_modules(keep: set[str] | frozenset[str] = frozenset()) -> int:
    """Drop imported plugin modules except those of plugins in ``keep``. Returns the number removed."""
    removed = 0
    for m in [m for m in sys.modules if m.startswith(MODULE_PREFIX + ".")]:
        if m[len(MODULE_PREFIX) + 1:].split(".", 1)[0] in keep:
            continue
        sys.modules.pop(m, None)
        removed += 1
    return removed


def diagnose(
    loader: PluginLoader,
    configured: set[str],
    name: str | None = None,
) -> dict[str, Any] | list[dict[str, Any]]:
    """Static checks of plugin units, without importing them."""
    if name:
        unit = loader.find(name)
        if unit is None:
            return {"plugin": name, "ok": False, "issues": ["Plugin not found"]}
        return _diagnose_unit(unit, configured)
    return [_diagnose_unit(unit, configured) for unit in loader.discover()]


def _diagnose_unit(unit: PluginUnit, configured: set[str]) -> dict[str, Any]:
    issues: list[str] = []
    if unit.artifact == Artifact.SOURCE:
        try:
            tree = ast.parse(unit.entry.read_text(encoding="utf-8"), filename=str(unit.entry))
        except (OSError, SyntaxError, ValueError) as e:
            issues.append(f"Cannot parse {unit.entry.name}: {e}")
        else:
            issues.extend(_contract_issues(tree, unit.name))

    return {
        "plugin": unit.name,
        "ok": not issues,
        "issues": issues,
        "artifact": str(unit.artifact),
        "configured": unit.name in configured,
        "path": str(unit.path),
    }


def _contract_issues(tree: ast.Module, name: str) -> list[str]:
    """Best-effort check that a unit exports a definition for ``name``."""
    for node in ast.walk(tree):
        if isinstance(node, ast.Call) and getattr(node.func, "id", None) == "define_plugin":
            first = node.args[0] if node.args else None
            if isinstance(first, ast.Constant) and first.value != name:
                return [f"define_plugin name '{first.value}' does not match directory '{name}'"]
            return []

    assigned: dict[str, Any] = {}
    has_setup = False
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == "setup":
            has_setup = True
        elif isinstance(node, ast.Assign):
            for target in node.targets:
                if isinstance(target, ast.Name) and isinstance(node.value, ast.Constant):
                    assigned[target.id] = node.value.value

    issues = []
    if "name" not in assigned:
        issues.append("Missing plugin definition: export `plugin = define_plugin(...)` or `name`")
    elif assigned["name"] != name:
        issues.append(f"name '{assigned['name']}' does not match directory '{name}'")
    if not has_setup:
        issues.append("Missing setup function")
    return issues
