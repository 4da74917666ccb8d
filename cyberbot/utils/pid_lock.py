"""
PID-based file locking with stale lock recovery.

Guards the config file while the plugin set is written back, so a CLI
invocation and a running host never interleave their writes.
"""

import json
import os
import time
from pathlib import Path

import psutil


class PIDLockError(Exception):
    """Raised when lock acquisition fails."""


class PIDLock:
    """
    Exclusive lock file next to a resource, owned by one process at a time.

    A lock left behind by a process that no longer exists is stolen.

    Usage:
        with PIDLock(Path("config.json")):
            ...
    """

    def __init__(self, lock_path: Path, timeout: float = 10):
        self.lock_path = Path(lock_path)
        self.lock_file = self.lock_path.with_suffix(self.lock_path.suffix + ".lock")
        self.timeout = timeout
        self.pid = os.getpid()
        self._acquired = False

    def acquire(self) -> bool:
        """Acquire the lock or raise PIDLockError after the timeout."""
        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            if self._try_acquire():
                self._acquired = True
                return True

            owner = self._read_owner()
            if owner is None or not self._is_process_alive(owner):
                self.lock_file.unlink(missing_ok=True)
                continue
            time.sleep(0.05)

        raise PIDLockError(f"Failed to acquire lock for {self.lock_path} within {self.timeout}s")

    def release(self) -> None:
        """Release the lock if this process still owns it."""
        if not self._acquired:
            return
        if self._read_owner() == self.pid:
            self.lock_file.unlink(missing_ok=True)
        self._acquired = False

    def _try_acquire(self) -> bool:
        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            return False
        try:
            os.write(fd, json.dumps({"pid": self.pid, "created_at": time.time()}).encode("utf-8"))
        finally:
            os.close(fd)
        return True

    def _read_owner(self) -> int | None:
        try:
            data = json.loads(self.lock_file.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        pid = data.get("pid") if isinstance(data, dict) else None
        return pid if isinstance(pid, int) else None

    @staticmethod
    def _is_process_alive(pid: int) -> bool:
        try:
            return psutil.Process(pid).is_running()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
