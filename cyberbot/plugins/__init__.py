"""Plugin runtime: loading, isolation, dispatch and scheduling."""

from cyberbot.plugins.errors import ErrorKind, FaultLog, OperationResult, PluginError
from cyberbot.plugins.loader import PluginDefinition, define_plugin
from cyberbot.plugins.manager import PluginManager

__all__ = [
    "ErrorKind",
    "FaultLog",
    "OperationResult",
    "PluginDefinition",
    "PluginError",
    "PluginManager",
    "define_plugin",
]
