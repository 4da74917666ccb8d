"""CLI commands for cyberbot."""

import asyncio
import importlib
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cyberbot import __logo__, __version__

app = typer.Typer(
    name="cyberbot",
    help=f"{__logo__} cyberbot - Hot-pluggable chat bot host",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} cyberbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """cyberbot - Hot-pluggable chat bot host."""
    pass


def _config_path(config_file: Path | None) -> Path:
    from cyberbot.config.loader import get_config_path

    return config_file.expanduser() if config_file else get_config_path()


@app.command()
def init(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Config file path"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
):
    """Write a default configuration file."""
    from cyberbot.config.loader import save_config
    from cyberbot.config.schema import Config

    path = _config_path(config_file)
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config(), path)
    console.print(f"[green]✓[/green] Created config at {path}")
    console.print("\nNext steps:")
    console.print(f"  1. Set [cyan]account.bot[/cyan] and [cyan]account.master[/cyan] in {path}")
    console.print("  2. Put plugins under [cyan]./plugins/<name>/main.py[/cyan]")
    console.print("  3. Start: [cyan]cyberbot run --adapter your_module:make_adapter[/cyan]")


@app.command("plugins")
def plugins_cmd(
    action: str = typer.Argument("list", help="Action: list|enable|disable|doctor"),
    target: str = typer.Option("", "--target", "-t", help="Plugin name for enable/disable/doctor"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """Manage the configured plugin set without a running bot (list/enable/disable/doctor)."""
    from cyberbot.config.loader import load_config
    from cyberbot.plugins.errors import PersistenceError
    from cyberbot.plugins.loader import PluginLoader, diagnose
    from cyberbot.plugins.persistence import PersistenceSync
    from cyberbot.plugins.registry import PluginKind

    path = _config_path(config_file)
    config = load_config(path)
    loader = PluginLoader(config.plugin_dirs())
    system = set(config.plugins.system) | {config.runtime.command_plugin}
    configured = set(config.plugins.system) | set(config.plugins.user)
    action = action.strip().lower()

    if action == "list":
        units = loader.discover()
        if not units:
            console.print("[yellow]No plugins found.[/yellow]")
            console.print(f"[dim]Searched: {', '.join(str(d) for d in loader.dirs)}[/dim]")
            return

        table = Table(title="Plugins")
        table.add_column("Name", style="cyan")
        table.add_column("Type")
        table.add_column("Artifact")
        table.add_column("Status")
        table.add_column("Path")

        for unit in units:
            status = "[green]Enabled[/green]" if unit.name in configured else "[red]Disabled[/red]"
            kind = "system" if unit.name in system else "user"
            table.add_row(unit.name, kind, str(unit.artifact), status, str(unit.path))

        console.print(table)
        console.print(f"\n[dim]Total: {len(units)} plugin(s), {len(configured & {u.name for u in units})} enabled[/dim]")
        return

    if action in {"enable", "disable"}:
        if not target:
            console.print(f"[red]--target is required for {action}[/red]")
            raise typer.Exit(1)
        enabled = action == "enable"
        if not enabled and target == config.runtime.command_plugin:
            console.print(f"[red]Plugin {target} is protected and cannot be disabled[/red]")
            raise typer.Exit(1)
        if loader.find(target) is None:
            console.print(f"[red]Plugin not found: {target}[/red]")
            raise typer.Exit(1)

        kind = PluginKind.SYSTEM if target in system else PluginKind.USER
        try:
            PersistenceSync(config, path).sync(target, kind, enabled)
        except PersistenceError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] {action.capitalize()}d plugin: [cyan]{target}[/cyan]")
        return

    if action == "doctor":
        report = diagnose(loader, configured, target or None)
        rows = report if isinstance(report, list) else [report]
        if not rows:
            console.print("[yellow]No plugins to diagnose.[/yellow]")
            return
        table = Table(title="Plugin Doctor")
        table.add_column("Plugin", style="cyan")
        table.add_column("Status")
        table.add_column("Issues")
        for item in rows:
            issues = item.get("issues", [])
            issue_text = "; ".join(str(v) for v in issues) if issues else "-"
            status = "[green]OK[/green]" if item.get("ok") else "[red]FAIL[/red]"
            table.add_row(str(item.get("plugin", "")), status, issue_text)
        console.print(table)
        if not all(bool(item.get("ok")) for item in rows):
            raise typer.Exit(1)
        return

    console.print(f"[red]Unknown action: {action}[/red]")
    console.print("[dim]Available actions: list, enable, disable, doctor[/dim]")
    raise typer.Exit(1)


def _resolve_factory(spec: str):
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter("expected 'module:factory'", param_hint="--adapter")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"cannot import {module_name}: {exc}", param_hint="--adapter")
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise typer.BadParameter(f"{spec} is not callable", param_hint="--adapter")
    return factory


@app.command()
def run(
    adapter: str = typer.Option(..., "--adapter", "-a", help="Adapter factory as module:callable, called with the config"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """Connect to the gateway and run plugins until interrupted."""
    from loguru import logger

    from cyberbot.adapter.base import EventSource
    from cyberbot.bot import Bot
    from cyberbot.config.loader import load_config
    from cyberbot.core.logger import configure_logger

    factory = _resolve_factory(adapter)
    path = _config_path(config_file)
    config = load_config(path)
    configure_logger(config)

    source = factory(config)
    if not isinstance(source, EventSource):
        console.print(f"[red]{adapter} did not return an EventSource[/red]")
        raise typer.Exit(1)

    console.print(f"{__logo__} Starting cyberbot v{__version__}...")
    bot = Bot(config, source, config_path=path)
    try:
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        console.print("\nGoodbye!")


if __name__ == "__main__":
    app()
