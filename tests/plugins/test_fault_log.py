import json
import threading
import time

import pytest

from cyberbot.plugins.errors import (
    ErrorKind,
    FaultLog,
    OperationResult,
    PluginNotFoundError,
    Status,
    format_error,
)


def _raise(message):
    try:
        raise ValueError(message)
    except ValueError as e:
        return e


def test_operation_result_rendering():
    assert str(OperationResult.success("done")) == "[+] done"
    assert str(OperationResult.info("noop")) == "[*] noop"
    assert str(OperationResult.warning("hmm")) == "[!] hmm"
    assert str(OperationResult.failure("bad")) == "[-] bad"
    assert OperationResult.warning("hmm").ok
    assert not OperationResult.failure("bad").ok


def test_result_from_error_keeps_kind():
    result = OperationResult.from_error(PluginNotFoundError("Plugin x not found", "x"))

    assert result.status == Status.FAILURE
    assert result.kind == ErrorKind.NOT_FOUND
    assert result.message == "Plugin x not found"


def test_format_error_includes_frames():
    text = format_error(_raise("broken"))

    assert text.splitlines()[0] == "ValueError: broken"
    assert "in _raise" in text
    assert format_error("plain") == "plain"


def test_record_and_filter():
    log = FaultLog()
    log.record("a", ErrorKind.HANDLER_FAULT, _raise("x"))
    log.record("a", ErrorKind.TASK_FAULT, "tick")
    log.record("b", ErrorKind.HANDLER_FAULT, _raise("y"), code="E42")

    assert len(log) == 3
    assert log.count(plugin="a") == 2
    assert log.count(kind=ErrorKind.HANDLER_FAULT) == 2
    assert log.records(plugin="a")[0].code == "ValueError"
    assert log.records(plugin="b")[0].code == "E42"


def test_log_is_bounded():
    log = FaultLog(max_records=3)
    for i in range(5):
        log.record(f"p{i}", ErrorKind.HANDLER_FAULT, "x")

    assert [r.plugin for r in log.records()] == ["p2", "p3", "p4"]


def test_prune_drops_old_records():
    log = FaultLog()
    old = log.record("a", ErrorKind.HANDLER_FAULT, "old")
    old.timestamp = time.time() - 10 * 86400
    log.record("a", ErrorKind.HANDLER_FAULT, "new")

    assert log.prune(7) == 1
    assert [r.message for r in log.records()] == ["new"]
    assert log.prune(7) == 0


def test_file_backed_log_round_trips(tmp_path):
    path = tmp_path / "faults.json"
    log = FaultLog(path=path)
    log.record("a", ErrorKind.FACADE_FAULT, "boom", code="send_group_message")

    reloaded = FaultLog(path=path)

    assert len(reloaded) == 1
    record = reloaded.records()[0]
    assert record.kind == ErrorKind.FACADE_FAULT
    assert record.code == "send_group_message"
    assert json.loads(path.read_text())[0]["kind"] == "FacadeFault"


def test_unreadable_fault_file_is_ignored(tmp_path):
    path = tmp_path / "faults.json"
    path.write_text("not json")

    assert len(FaultLog(path=path)) == 0


@pytest.mark.asyncio
async def test_writes_leave_the_event_loop(tmp_path, monkeypatch):
    path = tmp_path / "faults.json"
    log = FaultLog(path=path)
    threads = []
    write = FaultLog._write

    def tracking_write(self, payload):
        threads.append(threading.get_ident())
        write(self, payload)

    monkeypatch.setattr(FaultLog, "_write", tracking_write)

    log.record("a", ErrorKind.HANDLER_FAULT, "one")
    log.record("a", ErrorKind.HANDLER_FAULT, "two")
    assert threads == []

    await log.flush()

    assert threads
    assert threading.get_ident() not in threads
    assert [r["message"] for r in json.loads(path.read_text())] == ["one", "two"]


def test_writes_are_immediate_without_a_loop(tmp_path):
    path = tmp_path / "faults.json"
    FaultLog(path=path).record("a", ErrorKind.TASK_FAULT, "tick")

    assert json.loads(path.read_text())[0]["message"] == "tick"
