"""
Core command plugin.

Handles ``#`` commands from masters and admins: help, about, status, plugin
management and settings. It cannot be disabled since it is the only way to
administer a running bot from chat.
"""

import platform
import shutil
import time

import psutil
from loguru import logger

from cyberbot import __logo__, __version__
from cyberbot.plugins import define_plugin

PREFIX = "#"
STARTED_AT = time.time()

ABOUT_TEXT = (
    f"〓 {__logo__} cyberbot 〓\n"
    "A hot-pluggable chat bot framework\n"
    "━━━━━━━━━━━━━━━━\n"
    "├─ 🧩 Plugins load, reload and unload at run time\n"
    "├─ 🛡️ A failing plugin never takes the host down\n"
    "├─ ⏰ Cron tasks per plugin\n"
    "└─ 🔧 OneBot v11 / NapCat gateway"
)

HELP_TEXT = (
    "〓 💡 cyberbot help 〓\n"
    "#help 👉 show this message\n"
    "#about 👉 about the framework\n"
    "#status 👉 runtime status\n"
    "#plugin 👉 manage plugins\n"
    "#settings 👉 bot settings"
)

PLUGIN_HELP = (
    "〓 🧩 Plugins 〓\n"
    "#plugin list\n"
    "#plugin enable <name>\n"
    "#plugin disable <name>\n"
    "#plugin reload <name>"
)

SETTINGS_HELP = "〓 ⚙️ Settings 〓\n#settings detail"


def _uptime() -> str:
    seconds = int(time.time() - STARTED_AT)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    return f"{days}d {hours}h {minutes}m {seconds}s"


async def _safe(call, default):
    try:
        return await call()
    except Exception as e:
        logger.warning(f"cmds: {call.__name__} failed: {e}")
        return default


async def cmd_help(ctx, e, args):
    return await e.reply(HELP_TEXT)


async def cmd_about(ctx, e, args):
    return await e.reply(ABOUT_TEXT)


async def cmd_status(ctx, e, args):
    enabled, available = ctx.plugin.counts()
    login = await _safe(ctx.bot.get_login_info, {}) or {}
    version = await _safe(ctx.bot.get_version_info, {}) or {}
    friends = await _safe(ctx.bot.get_friend_list, []) or []
    groups = await _safe(ctx.bot.get_group_list, []) or []

    rss = psutil.Process().memory_info().rss
    memory = psutil.virtual_memory()
    disk = shutil.disk_usage(".")
    gb = 1024 ** 3

    await e.reply(
        "〓 🟢 Bot status 〓\n"
        f"🤖 cyberbot({_field(login, 'nickname', 'Unknown')})\n"
        f"❄ {_field(login, 'user_id', 'Unknown')}\n"
        f"🧩 {enabled}/{available} plugins enabled\n"
        f"🕦 {_uptime()}\n"
        f"📋 {len(friends)} friends, {len(groups)} groups\n"
        f"🔷 {_field(version, 'app_name', 'cyberbot')}-{_field(version, 'protocol_version', 'Unknown')}"
        f"-{_field(version, 'app_version', 'Unknown')}\n"
        f"🚀 bot {rss / 1024 / 1024:.2f} MB-{rss / memory.total * 100:.2f}%\n"
        f"💻 {platform.system()}-{platform.machine()}-python{platform.python_version()}-v{__version__}\n"
        f"⚡ {memory.used / gb:.2f} GB/{memory.total / gb:.2f} GB-{memory.percent:.2f}%\n"
        f"💾 {disk.used / gb:.0f} GB/{disk.total / gb:.0f} GB-{disk.used / disk.total * 100:.2f}%"
    )


async def plugin_list(ctx, e, args):
    lines = ["〓 🧩 cyberbot plugins 〓"]
    for row in ctx.plugin.list_plugins():
        mark = "🟢" if row["enabled"] else "🔴"
        version = f"-{row['version']}" if row["version"] else ""
        label = "system" if row["kind"] == "system" else "user"
        lines.append(f"{mark} {row['name']}{version} ({label})")
    await e.reply("\n".join(lines))


async def plugin_enable(ctx, e, args):
    if not args:
        return await e.reply("[-] Please specify a plugin name")
    result = await ctx.plugin.enable(args[0])
    await e.reply(str(result))


async def plugin_disable(ctx, e, args):
    if not args:
        return await e.reply("[-] Please specify a plugin name")
    await e.reply(f"[*] Disabling plugin: {args[0]}...")
    result = await ctx.plugin.disable(args[0])
    await e.reply(str(result))


async def plugin_reload(ctx, e, args):
    if not args:
        return await e.reply("[-] Please specify a plugin name")
    result = await ctx.plugin.reload(args[0])
    await e.reply(str(result))


async def settings_detail(ctx, e, args):
    if not ctx.is_master(e):
        return await e.reply("[-] Permission denied")
    account = ctx.config.account
    await e.reply(
        "〓 ⚙️ Bot settings 〓\n"
        f"Masters: {', '.join(str(m) for m in account.master)}\n"
        f"Admins: {', '.join(str(a) for a in account.admins)}"
    )


COMMANDS = {
    "help": {"handler": cmd_help},
    "about": {"handler": cmd_about},
    "status": {"handler": cmd_status},
    "plugin": {
        "subcommands": {
            "list": plugin_list,
            "enable": plugin_enable,
            "disable": plugin_disable,
            "reload": plugin_reload,
        },
        "help": PLUGIN_HELP,
    },
    "settings": {
        "subcommands": {"detail": settings_detail},
        "help": SETTINGS_HELP,
    },
}


def _field(obj, key, default=None):
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


async def setup(ctx):
    async def on_message(e):
        raw = e.get("raw_message") or ""
        if not raw.startswith(PREFIX):
            return
        sender = _field(e.get("sender"), "user_id")
        if not ctx.has_right(sender):
            return

        cmd, *rest = raw[len(PREFIX):].split() or [""]
        command = COMMANDS.get(cmd)
        if command is None:
            return

        try:
            if "handler" in command:
                return await command["handler"](ctx, e, rest)
            if not rest:
                return await e.reply(command["help"])
            sub = command["subcommands"].get(rest[0])
            if sub is None:
                return await e.reply(command["help"])
            return await sub(ctx, e, rest[1:])
        except Exception as error:
            logger.error(f"cmds: #{cmd} failed: {error}")
            return await e.reply(f"[-] Command failed: {error}")

    ctx.handle("message", on_message)


plugin = define_plugin("cmds", setup, version="1.0.0", description="Core commands")
