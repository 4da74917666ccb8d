"""
Plugin lifecycle orchestration.

``PluginManager`` owns the registry, dispatcher, task pool, fault log and
façade for one host. Every public operation returns an ``OperationResult``;
load, enable, disable and reload on the same name are serialized by a
per-name lock.
"""

import asyncio
import inspect
import time
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from cyberbot.adapter.base import EventSource
from cyberbot.config.schema import Config
from cyberbot.plugins.context import PluginContext, PluginHandle
from cyberbot.plugins.dispatcher import Dispatcher
from cyberbot.plugins.errors import (
    ErrorKind,
    FaultLog,
    OperationResult,
    PersistenceError,
    PluginError,
    PluginInitError,
)
from cyberbot.plugins.loader import PluginLoader, PluginUnit, diagnose, invalidate
from cyberbot.plugins.persistence import PersistenceSync
from cyberbot.plugins.reclaimer import Reclaimer
from cyberbot.plugins.registry import LoadedPlugin, PluginKind, PluginRegistry
from cyberbot.plugins.scheduler import TaskPool, TaskRegistrar


class PluginManager:
    """Loads, enables, disables and reloads plugins at run time."""

    def __init__(
        self,
        config: Config,
        bot: EventSource,
        config_path: Path | None = None,
        dirs: list[Path] | None = None,
        faults: FaultLog | None = None,
        memory_probe: Callable[[], float] | None = None,
    ):
        self.config = config
        self.bot = bot
        self.registry = PluginRegistry()
        if faults is None:
            fault_path = config.runtime.fault_log_path
            faults = FaultLog(config.runtime.max_fault_records, Path(fault_path) if fault_path else None)
        self.faults = faults
        self.loader = PluginLoader(dirs if dirs is not None else config.plugin_dirs())
        self.context = PluginContext(config, bot, self.faults, manager=self)
        self.dispatcher = Dispatcher(bot, self.faults, augment=self.context.add_reply_method)
        self.pool = TaskPool()
        self.persistence = PersistenceSync(config, config_path)
        self.reclaimer = Reclaimer(self, config.reclaimer, memory_probe=memory_probe)
        self._locks: dict[str, asyncio.Lock] = {}
        self._system_names: set[str] = set(config.plugins.system)
        self.mark_system(self.protected)

    @property
    def protected(self) -> str:
        return self.config.runtime.command_plugin

    def lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock

    def is_locked(self, name: str) -> bool:
        lock = self._locks.get(name)
        return lock is not None and lock.locked()

    def locked_names(self) -> list[str]:
        return [name for name, lock in self._locks.items() if lock.locked()]

    def kind_of(self, name: str) -> PluginKind:
        return PluginKind.SYSTEM if name in self._system_names else PluginKind.USER

    def mark_system(self, name: str) -> None:
        """Classify ``name`` as a system plugin from now on."""
        self._system_names.add(name)

    # Startup and shutdown

    async def init(self) -> tuple[int, int]:
        """
        Load every configured plugin, system list first.

        Returns:
            (loaded, failed) counts.
        """
        names = list(dict.fromkeys(self.config.plugins.system + self.config.plugins.user))
        logger.info(f"[+] Loading configured plugins: {', '.join(names) or 'none'}")

        success = fail = 0
        for name in names:
            result = await self.load(name)
            if result.ok:
                success += 1
            else:
                logger.error(f"[-] Plugin {name} failed to load: {result.message}")
                fail += 1

        enabled, available = self.counts()
        logger.info(
            f"[+] Plugin loading finished: {success} succeeded, {fail} failed, "
            f"{enabled}/{available} enabled"
        )
        return success, fail

    async def shutdown(self) -> None:
        """Stop the reclaimer, every task and every subscription."""
        self.reclaimer.stop()
        for record in self.registry.enabled():
            async with self.lock_for(record.name):
                self._teardown(record)
        for owner in self.pool.owners():
            self.pool.drop_owner(owner)
        await self.faults.flush()
        logger.info("Plugin manager stopped")

    # Queries

    def get_plugins(self) -> list[str]:
        """
        Names of registered plugins.

        Records whose unit vanished from disk are dropped, and the removal is
        persisted.
        """
        for record in self.registry.list_all():
            if self.is_locked(record.name) or self.loader.find(record.name) is not None:
                continue
            logger.warning(f"[!] Plugin {record.name} no longer exists on disk, removing it")
            if record.enabled:
                self._teardown(record)
            self._forget(record)
            warning = self._persist(record.name, record.kind, False)
            if warning:
                logger.warning(str(warning))
        return [p.name for p in self.registry.list_all()]

    def get_plugins_from_dir(self) -> list[str]:
        return [unit.name for unit in self.loader.discover()]

    def counts(self) -> tuple[int, int]:
        """(enabled, available) where available counts discoverable units."""
        return len(self.registry.enabled()), len(self.loader.discover())

    def list_plugins(self) -> list[dict[str, Any]]:
        """Every registered or discoverable plugin with its state."""
        rows: list[dict[str, Any]] = []
        seen: set[str] = set()
        for record in self.registry.list_all():
            seen.add(record.name)
            rows.append({
                "name": record.name,
                "kind": str(record.kind),
                "version": record.version,
                "description": record.description,
                "enabled": record.enabled,
                "loaded": True,
                "path": record.path,
                "listeners": len(record.listeners),
                "tasks": sum(1 for t in record.tasks if t is not None),
            })
        for unit in self.loader.discover():
            if unit.name in seen:
                continue
            rows.append({
                "name": unit.name,
                "kind": str(self.kind_of(unit.name)),
                "version": "",
                "description": "",
                "enabled": False,
                "loaded": False,
                "path": str(unit.path),
                "listeners": 0,
                "tasks": 0,
            })
        return sorted(rows, key=lambda r: (r["kind"] != PluginKind.SYSTEM, r["name"].lower()))

    # Lifecycle

    async def load(self, name: str) -> OperationResult:
        async with self.lock_for(name):
            return await self._load(name)

    async def enable(self, name: str) -> OperationResult:
        async with self.lock_for(name):
            record = self.registry.get(name)
            if record is not None and record.enabled:
                logger.debug(f"[*] Plugin {name} is already enabled")
                return OperationResult.info(f"Plugin {name} is already enabled")

            if self.loader.find(name) is None:
                return self._not_found(name)

            if record is None or record.disabled_at is not None:
                result = await self._load(name, auto_enable=False)
                if not result.ok:
                    return result
                record = self.registry.get(name)

            return await self._enable(record)

    async def disable(self, name: str) -> OperationResult:
        if name == self.protected:
            logger.warning(f"[!] Refusing to disable protected plugin {name}")
            return OperationResult.failure(
                f"Plugin {name} is protected and cannot be disabled", ErrorKind.PROTECTED
            )

        async with self.lock_for(name):
            record = self.registry.get(name)
            if record is None:
                if self.loader.find(name) is not None:
                    return OperationResult.info(f"Plugin {name} is not enabled")
                return self._not_found(name)
            if not record.enabled:
                return OperationResult.info(f"Plugin {name} is already disabled")

            self._teardown(record)
            logger.info(f"[+] Plugin {name} disabled")
            warning = self._persist(name, record.kind, False)
            return warning or OperationResult.success(f"Plugin {name} disabled")

    async def reload(self, name: str) -> OperationResult:
        async with self.lock_for(name):
            record = self.registry.get(name)
            if record is None:
                logger.warning(f"[!] Plugin {name} is not loaded, loading it as a new plugin")
                return await self._load(name)

            if self.loader.find(name) is None:
                return self._not_found(name)

            was_enabled = record.enabled
            if was_enabled:
                self._teardown(record)

            settle_ms = max(0, self.config.runtime.reload_settle_ms)
            await asyncio.sleep(settle_ms / 1000)

            result = await self._load(name, auto_enable=False)
            if not result.ok:
                return result

            if was_enabled:
                result = await self._enable(self.registry.get(name), persist=False)
                if not result.ok:
                    return result

            logger.info(f"[+] Plugin {name} reloaded")
            return OperationResult.success(f"Plugin {name} reloaded")

    # Internals; callers hold the name's lock

    async def _load(self, name: str, auto_enable: bool = True) -> OperationResult:
        unit = self.loader.find(name)
        if unit is None:
            return self._not_found(name)

        existing = self.registry.get(name)
        if existing is not None:
            if existing.enabled:
                self._teardown(existing)
            self._forget(existing)

        try:
            record = await self._build(unit)
        except PluginError as e:
            cause = e.__cause__ or e
            logger.error(f"[-] {e}")
            self.faults.record(name, e.kind, cause)
            return OperationResult.from_error(e)

        self.registry.register(record)
        logger.info(f"[+] Plugin {name} v{record.version} loaded ({record.kind})")

        if auto_enable and self.persistence.contains(name, record.kind):
            return await self._enable(record, persist=False)
        return OperationResult.success(f"Plugin {name} loaded")

    async def _build(self, unit: PluginUnit) -> LoadedPlugin:
        name = unit.name
        module = self.loader.import_unit(unit)
        try:
            definition = self.loader.read_definition(module, unit)
        except PluginError:
            invalidate(name, unit.path)
            raise

        registrar = TaskRegistrar(
            name,
            self.pool,
            self.faults,
            context=self.context.task_context(name),
            event_factory=self.context.make_task_event,
        )
        handle = PluginHandle(name, self.context, self.dispatcher, registrar)

        try:
            result = definition.setup(handle)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            for task in registrar.tasks:
                if task is not None:
                    self.pool.discard(task)
            handle.release()
            invalidate(name, unit.path)
            raise PluginInitError(f"Plugin {name} setup failed: {e}", name) from e

        return LoadedPlugin(
            name=name,
            path=str(unit.path),
            kind=self.kind_of(name),
            version=definition.version,
            description=definition.description,
            listeners=handle.listeners,
            tasks=list(registrar.tasks),
            module_key=unit.module_key,
            handle=handle,
        )

    async def _enable(self, record: LoadedPlugin, persist: bool = True) -> OperationResult:
        name = record.name
        record.enabled = True
        try:
            for subscription in record.listeners:
                self.dispatcher.subscribe(subscription)
                logger.debug(f"[+] Plugin {name} subscribed to {subscription.category}")
            for task in record.tasks:
                if task is None:
                    logger.error(f"[-] Plugin {name} has an invalid scheduled task, check its cron expression")
                    continue
                task.start()
        except Exception as e:
            logger.error(f"[-] Failed to enable plugin {name}: {e}")
            self.faults.record(name, ErrorKind.INITIALIZATION_ERROR, e)
            try:
                self._teardown(record)
            except Exception as rollback_error:
                logger.warning(f"[!] Rollback after failed enable of {name} also failed: {rollback_error}")
            return OperationResult.failure(f"Failed to enable plugin {name}: {e}", ErrorKind.INITIALIZATION_ERROR)

        record.disabled_at = None
        logger.info(f"[+] Plugin {name} enabled")
        if persist:
            warning = self._persist(name, record.kind, True)
            if warning:
                return warning
        return OperationResult.success(f"Plugin {name} enabled")

    def _teardown(self, record: LoadedPlugin) -> None:
        """Disable in memory: unsubscribe, stop tasks, drop caches. Never persists."""
        record.enabled = False
        for subscription in record.listeners:
            try:
                self.dispatcher.unsubscribe(subscription)
            except Exception as e:
                logger.error(f"[-] Plugin {record.name} failed to unsubscribe {subscription.category}: {e}")
        for task in record.tasks:
            if task is None:
                continue
            task.stop()
            self.pool.discard(task)
        record.listeners.clear()
        record.tasks.clear()
        invalidate(record.name, Path(record.path))
        if record.handle is not None:
            record.handle.release()
            record.handle = None
        record.disabled_at = time.time()

    def _forget(self, record: LoadedPlugin) -> None:
        self.registry.unregister(record.name)
        self.pool.drop_owner(record.name)

    def _persist(self, name: str, kind: PluginKind, enabled: bool) -> OperationResult | None:
        try:
            self.persistence.sync(name, kind, enabled)
        except PersistenceError as e:
            logger.warning(f"[!] {e}")
            self.faults.record(name, ErrorKind.PERSISTENCE_ERROR, e.__cause__ or e)
            state = "enabled" if enabled else "disabled"
            return OperationResult.warning(
                f"Plugin {name} {state}, but the config file was not updated: {e}",
                ErrorKind.PERSISTENCE_ERROR,
            )
        return None

    def _not_found(self, name: str) -> OperationResult:
        logger.warning(f"[-] Plugin {name} not found")
        return OperationResult.failure(f"Plugin {name} not found", ErrorKind.NOT_FOUND)

    def doctor(self, name: str | None = None) -> dict[str, Any] | list[dict[str, Any]]:
        configured = set(self.config.plugins.system) | set(self.config.plugins.user)
        return diagnose(self.loader, configured, name)
