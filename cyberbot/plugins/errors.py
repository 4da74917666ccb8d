"""Error taxonomy, operation results and the bounded fault log."""

import asyncio
import json
import time
import traceback
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from loguru import logger


class ErrorKind(StrEnum):
    """Failure categories attributed to plugins."""

    NOT_FOUND = "NotFound"
    INVALID_CONTRACT = "InvalidContract"
    INITIALIZATION_ERROR = "InitializationError"
    SCHEDULE_INVALID = "ScheduleInvalid"
    HANDLER_FAULT = "HandlerFault"
    PERSISTENCE_ERROR = "PersistenceError"
    PROTECTED = "Protected"
    TASK_FAULT = "TaskFault"
    FACADE_FAULT = "FacadeFault"


class PluginError(Exception):
    """Base class for plugin runtime errors."""

    kind: ErrorKind = ErrorKind.INITIALIZATION_ERROR

    def __init__(self, message: str, plugin: str | None = None):
        super().__init__(message)
        self.plugin = plugin


class PluginNotFoundError(PluginError):
    kind = ErrorKind.NOT_FOUND


class InvalidContractError(PluginError):
    kind = ErrorKind.INVALID_CONTRACT


class PluginInitError(PluginError):
    """Raised when importing a unit or running its setup fails; the cause is chained."""

    kind = ErrorKind.INITIALIZATION_ERROR


class ScheduleInvalidError(PluginError):
    kind = ErrorKind.SCHEDULE_INVALID


class PersistenceError(PluginError):
    kind = ErrorKind.PERSISTENCE_ERROR


class ProtectedPluginError(PluginError):
    kind = ErrorKind.PROTECTED


class Status(StrEnum):
    SUCCESS = "+"
    INFO = "*"
    WARNING = "!"
    FAILURE = "-"


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of an administrative operation.

    ``str(result)`` renders the chat-facing form, e.g. ``[+] Plugin demo enabled``.
    """

    status: Status
    message: str
    kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.status != Status.FAILURE

    def __str__(self) -> str:
        return f"[{self.status}] {self.message}"

    @classmethod
    def success(cls, message: str) -> "OperationResult":
        return cls(Status.SUCCESS, message)

    @classmethod
    def info(cls, message: str) -> "OperationResult":
        return cls(Status.INFO, message)

    @classmethod
    def warning(cls, message: str, kind: ErrorKind | None = None) -> "OperationResult":
        return cls(Status.WARNING, message, kind)

    @classmethod
    def failure(cls, message: str, kind: ErrorKind | None = None) -> "OperationResult":
        return cls(Status.FAILURE, message, kind)

    @classmethod
    def from_error(cls, error: PluginError) -> "OperationResult":
        return cls(Status.FAILURE, str(error), error.kind)


def format_error(error: BaseException | str) -> str:
    """One-line summary plus the innermost two frames of the traceback."""
    if isinstance(error, str):
        return error
    lines = [f"{type(error).__name__}: {error}"]
    frames = traceback.extract_tb(error.__traceback__)[-2:] if error.__traceback__ else []
    for frame in frames:
        lines.append(f'  File "{frame.filename}", line {frame.lineno}, in {frame.name}')
    return "\n".join(lines)


@dataclass
class FaultRecord:
    """One attributed failure."""
    plugin: str
    kind: ErrorKind
    message: str
    code: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = str(self.kind)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FaultRecord":
        return cls(
            plugin=data.get("plugin", ""),
            kind=ErrorKind(data.get("kind", ErrorKind.HANDLER_FAULT)),
            message=data.get("message", ""),
            code=data.get("code", ""),
            timestamp=float(data.get("timestamp", time.time())),
        )


class FaultLog:
    """
    Bounded in-memory log of plugin faults, oldest dropped first.

    When ``path`` is set the log is loaded from and mirrored to a JSON file.
    """

    def __init__(self, max_records: int = 1000, path: Path | None = None):
        self.max_records = max_records
        self.path = Path(path).expanduser() if path else None
        self._records: deque[FaultRecord] = deque(maxlen=max_records)
        self._pending: list[dict[str, Any]] | None = None
        self._flusher: asyncio.Task | None = None
        if self.path:
            self._load()

    def record(
        self,
        plugin: str,
        kind: ErrorKind,
        error: BaseException | str,
        code: str = "",
    ) -> FaultRecord:
        if not code and isinstance(error, BaseException):
            code = getattr(error, "code", None) or type(error).__name__
        entry = FaultRecord(plugin=plugin, kind=kind, message=format_error(error), code=str(code))
        self._records.append(entry)
        self._save()
        return entry

    def records(self, plugin: str | None = None, kind: ErrorKind | None = None) -> list[FaultRecord]:
        return [
            r for r in self._records
            if (plugin is None or r.plugin == plugin) and (kind is None or r.kind == kind)
        ]

    def count(self, plugin: str | None = None, kind: ErrorKind | None = None) -> int:
        return len(self.records(plugin, kind))

    def prune(self, max_age_days: float) -> int:
        """Drop records older than ``max_age_days``. Returns the number removed."""
        cutoff = time.time() - max_age_days * 86400
        kept = [r for r in self._records if r.timestamp >= cutoff]
        removed = len(self._records) - len(kept)
        if removed:
            self._records = deque(kept, maxlen=self.max_records)
            self._save()
        return removed

    def clear(self) -> None:
        self._records.clear()
        self._save()

    def __len__(self) -> int:
        return len(self._records)

    def _load(self) -> None:
        if not self.path or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            for item in data[-self.max_records:]:
                self._records.append(FaultRecord.from_dict(item))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Could not read fault log {self.path}: {e}")

    def _save(self) -> None:
        """Mirror the log to disk; inside a running loop the write happens on a worker thread."""
        if not self.path:
            return
        payload = [r.to_dict() for r in self._records]
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(payload)
            return
        self._pending = payload
        if self._flusher is None or self._flusher.done():
            self._flusher = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending is not None:
            payload, self._pending = self._pending, None
            await asyncio.to_thread(self._write, payload)

    async def flush(self) -> None:
        """Wait until the latest snapshot has reached disk."""
        if self._flusher is not None:
            await self._flusher

    def _write(self, payload: list[dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not write fault log {self.path}: {e}")
