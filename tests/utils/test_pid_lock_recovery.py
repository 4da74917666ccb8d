"""Tests for PID-based file locking."""

import json
import os

import psutil
import pytest

from cyberbot.utils.pid_lock import PIDLock, PIDLockError


@pytest.fixture
def temp_lock_path(tmp_path):
    return tmp_path / "config.json"


@pytest.fixture
def lock_file_path(temp_lock_path):
    return temp_lock_path.with_suffix(temp_lock_path.suffix + ".lock")


def _dead_pid() -> int:
    pid = 999_999
    while psutil.pid_exists(pid):
        pid += 1
    return pid


class TestPIDLockBasic:
    def test_acquire_and_release(self, temp_lock_path, lock_file_path):
        lock = PIDLock(temp_lock_path)

        assert not lock_file_path.exists()
        assert lock.acquire()

        data = json.loads(lock_file_path.read_text())
        assert data["pid"] == os.getpid()
        assert "created_at" in data

        lock.release()
        assert not lock_file_path.exists()

    def test_context_manager(self, temp_lock_path, lock_file_path):
        with PIDLock(temp_lock_path):
            assert lock_file_path.exists()
        assert not lock_file_path.exists()

    def test_release_without_acquire_is_noop(self, temp_lock_path, lock_file_path):
        lock_file_path.write_text(json.dumps({"pid": os.getpid()}))
        PIDLock(temp_lock_path).release()
        assert lock_file_path.exists()


class TestPIDLockContention:
    def test_live_owner_blocks_until_timeout(self, temp_lock_path):
        with PIDLock(temp_lock_path):
            with pytest.raises(PIDLockError):
                PIDLock(temp_lock_path, timeout=0.2).acquire()

    def test_stale_lock_is_stolen(self, temp_lock_path, lock_file_path):
        lock_file_path.write_text(json.dumps({"pid": _dead_pid(), "created_at": 0}))

        with PIDLock(temp_lock_path, timeout=1):
            assert json.loads(lock_file_path.read_text())["pid"] == os.getpid()

    def test_corrupt_lock_is_stolen(self, temp_lock_path, lock_file_path):
        lock_file_path.write_text("garbage")

        with PIDLock(temp_lock_path, timeout=1):
            assert lock_file_path.exists()
        assert not lock_file_path.exists()
