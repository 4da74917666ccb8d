"""Configuration schema using Pydantic."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReconnectionConfig(BaseModel):
    """Gateway reconnection policy."""
    enable: bool = True
    attempts: int = 10
    delay: int = 5000  # ms between attempts


class NapcatConfig(BaseModel):
    """Connection settings for the chat gateway (NapCat / OneBot v11)."""
    base_url: str = "ws://127.0.0.1:3001"
    access_token: str = ""
    throw_promise: bool = False
    reconnection: ReconnectionConfig = Field(default_factory=ReconnectionConfig)
    debug: bool = False


class AccountConfig(BaseModel):
    """Bot identity and the users allowed to administer it."""
    bot: int = 0  # Bot account uin
    master: list[int] = Field(default_factory=list)
    admins: list[int] = Field(default_factory=list)

    @property
    def bot_uin(self) -> int:
        return self.bot


class PluginsConfig(BaseModel):
    """Plugins to auto-load and enable at startup, grouped by kind."""
    system: list[str] = Field(default_factory=lambda: ["cmds"])
    user: list[str] = Field(default_factory=lambda: ["demo"])
    dirs: list[str] = Field(default_factory=lambda: ["plugins"])  # Searched in order
    include_builtin: bool = True  # Append the bundled cmds/demo units to the search path


class ReclaimerConfig(BaseModel):
    """Periodic housekeeping for long-running hosts."""
    enabled: bool = True
    interval_s: int = 300
    idle_retention_s: int = 600  # Disabled plugins idle longer than this are evicted
    fault_retention_days: int = 7
    high_water_mb: int = 512  # RSS above this triggers a critical pass


class RuntimeConfig(BaseModel):
    """Plugin runtime behaviour."""
    command_plugin: str = "cmds"  # Protected: can never be disabled
    reload_settle_ms: int = 50
    fault_log_path: str = ""  # Empty keeps the fault log in memory only
    max_fault_records: int = 1000
    online_notice: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""
    enabled: bool = True
    level: str = "INFO"
    file_enabled: bool = True
    file_path: str = "~/.cyberbot/logs/cyberbot.log"
    rotation: str = "10 MB"
    retention: str = "7 days"


class Config(BaseSettings):
    """Root configuration for cyberbot."""
    model_config = SettingsConfigDict(env_prefix="CYBERBOT_", env_nested_delimiter="__")

    napcat: NapcatConfig = Field(default_factory=NapcatConfig)
    account: AccountConfig = Field(default_factory=AccountConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    reclaimer: ReclaimerConfig = Field(default_factory=ReclaimerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def plugin_dirs(self, base: Path | None = None) -> list[Path]:
        """Resolve plugin search directories, bundled units last."""
        root = base or Path.cwd()
        dirs = []
        for entry in self.plugins.dirs:
            path = Path(entry).expanduser()
            dirs.append(path if path.is_absolute() else root / path)
        if self.plugins.include_builtin:
            from cyberbot.builtin import BUILTIN_PLUGIN_DIR
            dirs.append(BUILTIN_PLUGIN_DIR)
        return dirs
