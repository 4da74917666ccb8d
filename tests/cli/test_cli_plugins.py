"""Tests for the offline plugins CLI."""

import json
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cyberbot.cli.commands import app


def _write_plugin(root: Path, name: str, declared: str | None = None) -> None:
    unit = root / name
    unit.mkdir(parents=True, exist_ok=True)
    (unit / "main.py").write_text(textwrap.dedent(f"""
        from cyberbot.plugins import define_plugin

        def setup(ctx):
            pass

        plugin = define_plugin("{declared or name}", setup)
    """), encoding="utf-8")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_path(tmp_path):
    plugin_root = tmp_path / "plugins"
    _write_plugin(plugin_root, "weather")
    _write_plugin(plugin_root, "cmds")
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "plugins": {
            "system": ["cmds"],
            "user": [],
            "dirs": [str(plugin_root)],
            "includeBuiltin": False,
        },
    }))
    return path


def _plugins(path: Path) -> dict:
    return json.loads(path.read_text())["plugins"]


def test_help_lists_actions(runner):
    result = runner.invoke(app, ["plugins", "--help"])
    assert result.exit_code == 0
    assert "doctor" in result.output.lower()


def test_version(runner):
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "cyberbot v" in result.output


def test_list(runner, config_path):
    result = runner.invoke(app, ["plugins", "list", "--config", str(config_path)])

    assert result.exit_code == 0
    assert "Plugins" in result.output
    assert "Total: 2 plugin(s), 1 enabled" in result.output


def test_enable_then_disable(runner, config_path):
    enabled = runner.invoke(app, ["plugins", "enable", "--target", "weather", "--config", str(config_path)])
    assert enabled.exit_code == 0
    assert _plugins(config_path)["user"] == ["weather"]

    disabled = runner.invoke(app, ["plugins", "disable", "--target", "weather", "--config", str(config_path)])
    assert disabled.exit_code == 0
    assert _plugins(config_path)["user"] == []
    assert _plugins(config_path)["system"] == ["cmds"]


def test_disable_protected_plugin_is_refused(runner, config_path):
    result = runner.invoke(app, ["plugins", "disable", "--target", "cmds", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "protected" in result.output
    assert _plugins(config_path)["system"] == ["cmds"]


def test_enable_unknown_plugin(runner, config_path):
    result = runner.invoke(app, ["plugins", "enable", "--target", "ghost", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_enable_requires_target(runner, config_path):
    result = runner.invoke(app, ["plugins", "enable", "--config", str(config_path)])
    assert result.exit_code == 1


def test_doctor_passes_for_healthy_plugins(runner, config_path):
    result = runner.invoke(app, ["plugins", "doctor", "--config", str(config_path)])

    assert result.exit_code == 0
    assert "Plugin Doctor" in result.output


def test_doctor_fails_on_name_mismatch(runner, config_path, tmp_path):
    _write_plugin(tmp_path / "plugins", "broken", declared="other")

    result = runner.invoke(app, ["plugins", "doctor", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_unknown_action(runner, config_path):
    result = runner.invoke(app, ["plugins", "explode", "--config", str(config_path)])
    assert result.exit_code == 1


def test_init_writes_config(runner, tmp_path):
    path = tmp_path / "new" / "config.json"

    result = runner.invoke(app, ["init", "--config", str(path)])

    assert result.exit_code == 0
    assert json.loads(path.read_text())["plugins"]["system"] == ["cmds"]


def test_run_rejects_bad_adapter_spec(runner, config_path):
    result = runner.invoke(app, ["run", "--adapter", "no-colon", "--config", str(config_path)])
    assert result.exit_code != 0
