"""Plugin registry for managing loaded plugins."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cyberbot.plugins.context import PluginHandle
    from cyberbot.plugins.dispatcher import Subscription
    from cyberbot.plugins.scheduler import ScheduledTask


class PluginKind(StrEnum):
    SYSTEM = "system"
    USER = "user"


@dataclass
class LoadedPlugin:
    """
    Runtime record of a plugin that passed loading.

    While ``enabled`` every listener is subscribed and every non-null task is
    running; while disabled none are. ``tasks`` keeps ``None`` for schedules
    that failed validation.
    """
    name: str
    path: str
    kind: PluginKind = PluginKind.USER
    version: str = "0.1.0"
    description: str = ""
    enabled: bool = False
    listeners: list[Subscription] = field(default_factory=list)
    tasks: list[ScheduledTask | None] = field(default_factory=list)
    loaded_at: float = field(default_factory=time.time)
    disabled_at: float | None = None
    module_key: str = ""
    handle: PluginHandle | None = None

    @property
    def is_system(self) -> bool:
        return self.kind == PluginKind.SYSTEM


class PluginRegistry:
    """Registry for managing plugins. Holds at most one record per name."""

    def __init__(self):
        self._plugins: dict[str, LoadedPlugin] = {}

    def register(self, plugin: LoadedPlugin):
        """Register a plugin, replacing any record with the same name."""
        self._plugins[plugin.name] = plugin

    def get(self, name: str) -> LoadedPlugin | None:
        """Get a plugin by name."""
        return self._plugins.get(name)

    def list_all(self) -> list[LoadedPlugin]:
        """List all registered plugins."""
        return list(self._plugins.values())

    def enabled(self) -> list[LoadedPlugin]:
        return [p for p in self._plugins.values() if p.enabled]

    def unregister(self, name: str) -> bool:
        """Unregister a plugin by name. Returns True if plugin was found."""
        if name in self._plugins:
            del self._plugins[name]
            return True
        return False

    def __contains__(self, name: str) -> bool:
        return name in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)
