"""Host process: wires the gateway adapter to the plugin runtime."""

import asyncio
import platform
from datetime import datetime
from pathlib import Path

from loguru import logger

from cyberbot import __logo__, __version__
from cyberbot.adapter import segments
from cyberbot.adapter.base import EventSource
from cyberbot.config.schema import Config
from cyberbot.plugins.manager import PluginManager

ONLINE_NOTICE_DELAY_S = 1.0


class Bot:
    """
    One bot account: gateway connection, plugin manager and housekeeping.

    Usage:
        bot = Bot(config, adapter, config_path=path)
        await bot.run()
    """

    def __init__(self, config: Config, adapter: EventSource, config_path: Path | None = None):
        self.config = config
        self.adapter = adapter
        self.manager = PluginManager(config, adapter, config_path=config_path)
        self._stopped = asyncio.Event()
        self._notice_task: asyncio.Task | None = None

    def _register_lifecycle_listeners(self) -> None:
        base_url = self.config.napcat.base_url
        on = self.adapter.on

        on("socket.open", lambda e: logger.info(f"[*] Connecting to {base_url}"))
        on("socket.error", lambda e: logger.error(f"[-] Websocket error: {_get(e, 'error_type')}"))
        on("socket.close", lambda e: logger.error(f"[-] Websocket closed: {_get(e, 'code')}"))
        on("meta_event.lifecycle", self._on_lifecycle)
        on("meta_event.heartbeat", lambda e: logger.debug("[*] Heartbeat"))
        on("message", lambda e: logger.info(f"[*] Received message: {_get(e, 'raw_message', '')}"))
        on(
            "api.response.failure",
            lambda e: logger.error(f"[-] API error, status: {_get(e, 'status')}, message: {_get(e, 'message')}"),
        )
        on("api.preSend", lambda e: logger.debug(f"[*] {_get(e, 'action')}: {_get(e, 'params')}"))

    def _on_lifecycle(self, event) -> None:
        if _get(event, "sub_type") == "connect":
            logger.info(f"[+] Connected to {self.config.napcat.base_url}")
            logger.info(f"{__logo__} cyberbot v{__version__}")

    async def start(self) -> None:
        self._register_lifecycle_listeners()
        await self.manager.init()
        await self.adapter.connect()
        await self.manager.reclaimer.start()
        if self.config.runtime.online_notice and self.config.account.master:
            self._notice_task = asyncio.create_task(self.notify_masters())

    async def notify_masters(self, delay: float = ONLINE_NOTICE_DELAY_S) -> int:
        """Tell every master the bot is online. Returns how many notices were sent."""
        await asyncio.sleep(delay)
        enabled, available = self.manager.counts()
        text = (
            f"[Bot{__logo__}] Online!\n"
            f"📅 {datetime.now():%Y-%m-%d %H:%M:%S}\n"
            f"🧩 Plugins: {enabled}/{available} enabled\n"
            f"💻 System: {platform.system()} {platform.machine()}\n"
            f"🎉 Ready to serve!"
        )
        sent = 0
        for master in self.config.account.master:
            try:
                await self.adapter.send_msg([segments.text(text)], user_id=master)
            except Exception as e:
                logger.error(f"[-] Failed to send online notice to master {master}: {e}")
                continue
            logger.info(f"[+] Sent online notice to master {master}")
            sent += 1
        return sent

    async def stop(self) -> None:
        if self._notice_task:
            self._notice_task.cancel()
        await self.manager.shutdown()
        await self.adapter.disconnect()
        self._stopped.set()

    async def run(self) -> None:
        """Start and block until ``stop`` is called or the task is cancelled."""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            if not self._stopped.is_set():
                await self.stop()


def _get(event, key: str, default=None):
    if isinstance(event, dict):
        return event.get(key, default)
    return getattr(event, key, default)
