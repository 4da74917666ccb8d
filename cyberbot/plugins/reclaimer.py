"""Periodic release of resources held for disabled plugins."""

from __future__ import annotations

import asyncio
import gc
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

import psutil
from loguru import logger

from cyberbot.config.schema import ReclaimerConfig
from cyberbot.plugins.loader import invalidate, purge_plugin_modules

if TYPE_CHECKING:
    from cyberbot.plugins.manager import PluginManager


def process_rss_mb() -> float:
    return psutil.Process().memory_info().rss / (1024 * 1024)


@dataclass
class ReclaimReport:
    """What a single reclaim pass did."""
    critical: bool = False
    rss_mb: float = 0.0
    evicted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    faults_pruned: int = 0
    tasks_dropped: int = 0
    tasks_stopped: int = 0
    caches_cleared: int = 0
    modules_purged: int = 0
    collected: int = 0

    def summary(self) -> str:
        mode = "critical" if self.critical else "normal"
        return (
            f"{mode} pass: rss={self.rss_mb:.1f}MB evicted={len(self.evicted)} "
            f"faults_pruned={self.faults_pruned} tasks_dropped={self.tasks_dropped} "
            f"modules_purged={self.modules_purged}"
        )


class Reclaimer:
    """
    Evicts idle disabled plugins and prunes bookkeeping on an interval.

    Enabled plugins are never touched, and names whose lock is held are
    skipped until the next pass.
    """

    def __init__(
        self,
        manager: PluginManager,
        config: ReclaimerConfig,
        memory_probe: Callable[[], float] | None = None,
    ):
        self.manager = manager
        self.config = config
        self.memory_probe = memory_probe or process_rss_mb
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if not self.config.enabled or self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Reclaimer started (interval={self.config.interval_s}s)")

    def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.interval_s)
            try:
                report = self.run_once()
                logger.debug(f"Reclaimer {report.summary()}")
            except Exception as e:
                logger.error(f"Reclaimer pass failed: {e}")

    def run_once(self, now: float | None = None) -> ReclaimReport:
        now = now if now is not None else time.time()
        rss = self.memory_probe()
        report = ReclaimReport(critical=rss > self.config.high_water_mb, rss_mb=rss)

        registry = self.manager.registry
        pool = self.manager.pool

        for record in registry.list_all():
            if record.enabled or record.disabled_at is None:
                continue
            if self.manager.is_locked(record.name):
                report.skipped.append(record.name)
                continue
            if now - record.disabled_at < self.config.idle_retention_s:
                continue
            if record.handle:
                record.handle.release()
                record.handle = None
            invalidate(record.name, record.path)
            registry.unregister(record.name)
            report.tasks_dropped += pool.drop_owner(record.name)
            report.evicted.append(record.name)

        report.faults_pruned = self.manager.faults.prune(self.config.fault_retention_days)

        for owner in pool.owners():
            if owner not in registry and not self.manager.is_locked(owner):
                report.tasks_dropped += pool.drop_owner(owner)

        if report.critical:
            self._critical(report)

        if report.evicted:
            logger.info(f"Reclaimer evicted idle plugins: {', '.join(report.evicted)}")
        return report

    def _critical(self, report: ReclaimReport) -> None:
        registry = self.manager.registry
        logger.warning(
            f"Memory above high-water mark ({report.rss_mb:.1f}MB > {self.config.high_water_mb}MB), "
            f"running critical reclaim"
        )
        for record in registry.list_all():
            if record.handle and record.handle.cached_wrappers():
                record.handle.clear_cache()
                report.caches_cleared += 1

        keep = {r.name for r in registry.list_all() if r.enabled}
        keep.update(self.manager.locked_names())
        report.modules_purged = purge_plugin_modules(keep)

        for owner in self.manager.pool.owners():
            record = registry.get(owner)
            if record is not None and not record.enabled and not self.manager.is_locked(owner):
                report.tasks_stopped += self.manager.pool.stop_owner(owner)

        report.collected = gc.collect()