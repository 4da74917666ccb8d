"""Cron-scheduled plugin tasks."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from croniter import croniter
from loguru import logger

from cyberbot.plugins.errors import ErrorKind, FaultLog, ScheduleInvalidError


def _now() -> datetime:
    return datetime.now()


def normalize_expression(expr: str) -> str | None:
    """
    Map an expression onto croniter's field order.

    Five fields are standard cron. Six fields carry a leading seconds field,
    which croniter expects last.
    """
    if not isinstance(expr, str):
        return None
    fields = expr.split()
    if len(fields) == 5:
        return " ".join(fields)
    if len(fields) == 6:
        return " ".join(fields[1:] + fields[:1])
    return None


def validate_expression(expr: str) -> str:
    """
    Return the normalized expression.

    Raises:
        ScheduleInvalidError: if the expression is not valid cron.
    """
    normalized = normalize_expression(expr)
    if normalized is None or not croniter.is_valid(normalized):
        raise ScheduleInvalidError(f"Invalid cron expression: {expr!r}")
    return normalized


@dataclass(frozen=True)
class TaskContext:
    """Read-only view handed to scheduled callbacks."""
    plugin: str
    bot_uin: int
    send_private_message: Callable[..., Awaitable[Any]]
    send_group_message: Callable[..., Awaitable[Any]]


def _positional_arity(fn: Callable[..., Any]) -> int:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return 0
    count = 0
    for p in params:
        if p.kind == p.VAR_POSITIONAL:
            return 2
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            count += 1
    return min(count, 2)


class ScheduledTask:
    """
    A validated cron expression bound to its owner's callback.

    Created stopped. While running it is an asyncio task that sleeps until
    the next fire time and then invokes the callback.
    """

    def __init__(
        self,
        owner: str,
        expression: str,
        callback: Callable[..., Any],
        faults: FaultLog,
        context: TaskContext | None = None,
        event_factory: Callable[[], Any] | None = None,
    ):
        self.owner = owner
        self.expression = expression
        self.callback = callback
        self.faults = faults
        self.context = context
        self.event_factory = event_factory
        self._cron = validate_expression(expression)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_fire(self, now: datetime | None = None) -> datetime:
        return croniter(self._cron, now or _now()).get_next(datetime)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"cron:{self.owner}:{self.expression}")

    def stop(self) -> None:
        if self._task:
            self._task.cancel()
        self._task = None

    async def _loop(self) -> None:
        schedule = croniter(self._cron, _now())
        while True:
            fire_at = schedule.get_next(datetime)
            if fire_at < _now():
                # Slot passed while the previous callback was running
                continue
            # Timers may wake slightly early; never fire before the slot
            now = _now()
            while now < fire_at:
                await asyncio.sleep((fire_at - now).total_seconds())
                now = _now()
            await self.fire()

    async def fire(self) -> None:
        """Run the callback once; faults are logged and recorded, never raised."""
        try:
            arity = _positional_arity(self.callback)
            if arity == 0:
                result = self.callback()
            else:
                event = self.event_factory() if self.event_factory else None
                result = self.callback(*(self.context, event)[:arity])
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Plugin {self.owner} scheduled task '{self.expression}' failed: {e}")
            self.faults.record(self.owner, ErrorKind.TASK_FAULT, e)

    def __repr__(self) -> str:
        state = "running" if self.running else "stopped"
        return f"ScheduledTask(owner={self.owner!r}, expression={self.expression!r}, {state})"


class TaskPool:
    """Every task created by any plugin, keyed by owner."""

    def __init__(self):
        self._tasks: dict[str, list[ScheduledTask]] = {}

    def add(self, task: ScheduledTask) -> None:
        self._tasks.setdefault(task.owner, []).append(task)

    def tasks(self, owner: str | None = None) -> list[ScheduledTask]:
        if owner is not None:
            return list(self._tasks.get(owner, []))
        return [t for tasks in self._tasks.values() for t in tasks]

    def owners(self) -> list[str]:
        return list(self._tasks)

    def running_count(self) -> int:
        return sum(1 for t in self.tasks() if t.running)

    def discard(self, task: ScheduledTask) -> None:
        tasks = self._tasks.get(task.owner, [])
        if task in tasks:
            tasks.remove(task)
        if not tasks:
            self._tasks.pop(task.owner, None)

    def drop_owner(self, owner: str) -> int:
        """Stop and forget every task of ``owner``. Returns the number dropped."""
        tasks = self._tasks.pop(owner, [])
        for task in tasks:
            task.stop()
        return len(tasks)

    def stop_owner(self, owner: str) -> int:
        """Stop every running task of ``owner`` without forgetting them."""
        stopped = 0
        for task in self._tasks.get(owner, []):
            if task.running:
                task.stop()
                stopped += 1
        return stopped


class TaskRegistrar:
    """
    Collects a plugin's ``cron`` registrations during setup.

    Invalid expressions leave a ``None`` placeholder and record a
    ``ScheduleInvalid`` fault; registration continues.
    """

    def __init__(
        self,
        owner: str,
        pool: TaskPool,
        faults: FaultLog,
        context: TaskContext | None = None,
        event_factory: Callable[[], Any] | None = None,
    ):
        self.owner = owner
        self.pool = pool
        self.faults = faults
        self.context = context
        self.event_factory = event_factory
        self.tasks: list[ScheduledTask | None] = []

    def register(
        self,
        spec: str | list[tuple[str, Callable[..., Any]]],
        callback: Callable[..., Any] | None = None,
    ) -> None:
        if isinstance(spec, (list, tuple)):
            for entry in spec:
                expression, fn = entry
                self._add(expression, fn)
            return
        if callback is None:
            raise TypeError("cron(expression, callback) requires a callback")
        self._add(spec, callback)

    def _add(self, expression: str, callback: Callable[..., Any]) -> None:
        try:
            task = ScheduledTask(
                self.owner,
                expression,
                callback,
                self.faults,
                context=self.context,
                event_factory=self.event_factory,
            )
        except ScheduleInvalidError as e:
            logger.error(f"[-] Plugin {self.owner}: {e}")
            self.faults.record(self.owner, ErrorKind.SCHEDULE_INVALID, e)
            self.tasks.append(None)
            return
        self.pool.add(task)
        self.tasks.append(task)
