"""Shared fixtures: a recording gateway adapter and plugin unit helpers."""

import textwrap
from pathlib import Path
from typing import Any

import pytest

from cyberbot.adapter.base import EventSource
from cyberbot.config.schema import Config


class FakeAdapter(EventSource):
    """In-memory gateway that records every API action."""

    name = "fake"

    def __init__(self):
        super().__init__()
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.responses: dict[str, Any] = {}
        self.failures: dict[str, Exception] = {}
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def _send_action(self, action: str, params: dict[str, Any]) -> Any:
        self.calls.append((action, params))
        if action in self.failures:
            raise self.failures[action]
        if action in self.responses:
            return self.responses[action]
        if action.startswith("send_"):
            return {"message_id": 1000 + len(self.calls)}
        return {}

    def sent(self, action: str | None = None) -> list[dict[str, Any]]:
        return [params for name, params in self.calls if action is None or name == action]

    def sent_texts(self) -> list[str]:
        texts = []
        for name, params in self.calls:
            if not name.startswith("send_") or "message" not in params:
                continue
            texts.append("".join(
                seg["data"].get("text", "") for seg in params["message"] if seg["type"] == "text"
            ))
        return texts


def group_message(
    raw: str,
    user_id: int = 10001,
    group_id: int = 20002,
    message_id: int = 555,
) -> dict[str, Any]:
    return {
        "post_type": "message",
        "message_type": "group",
        "sub_type": "normal",
        "message_id": message_id,
        "user_id": user_id,
        "group_id": group_id,
        "raw_message": raw,
        "message": [{"type": "text", "data": {"text": raw}}],
        "sender": {"user_id": user_id, "nickname": "tester", "role": "member"},
    }


def private_message(raw: str, user_id: int = 10001, message_id: int = 777) -> dict[str, Any]:
    return {
        "post_type": "message",
        "message_type": "private",
        "sub_type": "friend",
        "message_id": message_id,
        "user_id": user_id,
        "raw_message": raw,
        "message": [{"type": "text", "data": {"text": raw}}],
        "sender": {"user_id": user_id, "nickname": "tester"},
    }


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def plugin_dir(tmp_path):
    d = tmp_path / "plugins"
    d.mkdir()
    return d


@pytest.fixture
def write_unit(plugin_dir):
    """Write ``<plugin_dir>/<name>/<filename>`` from a dedented source string."""

    def _write(name: str, source: str, filename: str = "main.py", root: Path | None = None) -> Path:
        unit = (root or plugin_dir) / name
        unit.mkdir(parents=True, exist_ok=True)
        path = unit / filename
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return unit

    return _write


@pytest.fixture
def config():
    cfg = Config()
    cfg.plugins.system = []
    cfg.plugins.user = []
    cfg.plugins.include_builtin = False
    cfg.runtime.reload_settle_ms = 0
    cfg.account.bot = 42
    cfg.account.master = [10001]
    cfg.account.admins = [10002]
    return cfg


@pytest.fixture
def make_manager(config, adapter, plugin_dir):
    from cyberbot.plugins.manager import PluginManager

    def _make(**kwargs):
        kwargs.setdefault("dirs", [plugin_dir])
        kwargs.setdefault("memory_probe", lambda: 0.0)
        return PluginManager(config, adapter, **kwargs)

    return _make


ECHO_PLUGIN = """
from cyberbot.plugins import define_plugin

async def setup(ctx):
    async def on_message(e):
        if e.raw_message == "ping":
            await e.reply("pong")
    ctx.handle("message", on_message)

plugin = define_plugin("{name}", setup, version="1.2.3", description="echo")
"""
