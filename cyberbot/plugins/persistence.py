"""Mirror of the enabled plugin set into the config file."""

from pathlib import Path

from loguru import logger

from cyberbot.config.loader import update_plugin_lists
from cyberbot.config.schema import Config
from cyberbot.plugins.errors import PersistenceError
from cyberbot.plugins.registry import PluginKind
from cyberbot.utils.pid_lock import PIDLockError


class PersistenceSync:
    """
    Keeps ``plugins.system`` / ``plugins.user`` in step with enable and disable.

    The in-memory config is updated first, then the file on disk is patched
    one name at a time so concurrent edits to other keys survive. With no
    ``config_path`` the set lives in memory only.
    """

    def __init__(self, config: Config, config_path: Path | None = None):
        self.config = config
        self.config_path = Path(config_path) if config_path else None

    def names(self, kind: PluginKind) -> list[str]:
        return self.config.plugins.system if kind == PluginKind.SYSTEM else self.config.plugins.user

    def contains(self, name: str, kind: PluginKind) -> bool:
        return name in self.names(kind)

    def sync(self, name: str, kind: PluginKind, enabled: bool) -> bool:
        """
        Record ``name`` as enabled or disabled.

        Returns True when the file changed.

        Raises:
            PersistenceError: if the config file could not be updated.
        """
        names = self.names(kind)
        if enabled and name not in names:
            names.append(name)
        elif not enabled:
            names[:] = [n for n in names if n != name]

        if self.config_path is None:
            return False

        try:
            changed = update_plugin_lists(self.config_path, name, str(kind), enabled)
        except (OSError, ValueError, PIDLockError) as e:
            raise PersistenceError(f"Could not update {self.config_path}: {e}", name) from e

        if changed:
            action = "added to" if enabled else "removed from"
            logger.debug(f"Plugin {name} {action} plugins.{kind} in {self.config_path}")
        return changed
