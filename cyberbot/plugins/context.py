"""
Capability façade exposed to plugins.

``PluginContext`` carries everything a plugin may touch: messaging,
moderation, identity checks, message parsing helpers and the plugin control
surface. Each plugin receives a ``PluginHandle`` over the shared context;
every method reached through the handle is wrapped so a failure is logged and
recorded against that plugin before it propagates back into plugin code.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import random
import re
import time
from typing import TYPE_CHECKING, Any, Callable, Sequence

import httpx
from loguru import logger

from cyberbot.adapter import segments
from cyberbot.adapter.base import EventSource
from cyberbot.adapter.events import Event
from cyberbot.config.schema import Config
from cyberbot.plugins.errors import ErrorKind, FaultLog, OperationResult
from cyberbot.plugins.scheduler import TaskContext, TaskRegistrar

if TYPE_CHECKING:
    from cyberbot.plugins.dispatcher import Dispatcher, Subscription
    from cyberbot.plugins.manager import PluginManager

IMAGE_URL_PATTERN = re.compile(r"\[CQ:image,.*?url=(.*?),")
REPLY_ID_PATTERN = re.compile(r"\[CQ:reply,id=(\d+)\]")
AT_PATTERN = re.compile(r"\[CQ:at,qq=(\d+)\]")
CQ_CODE_PATTERN = re.compile(r"\[CQ:[^\]]+\]")
APPID_PATTERN = re.compile(r"appid=(\d+)")
RKEY_BASE_PATTERN = re.compile(r"^(.*?)&rkey=")

DEFAULT_AVATAR_SIZE = 40


def _field(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _sender_id(target: Any) -> int | None:
    if isinstance(target, bool):
        return None
    if isinstance(target, int):
        return target
    sender = _field(target, "sender")
    user_id = _field(sender, "user_id") if sender is not None else None
    return user_id if isinstance(user_id, int) and not isinstance(user_id, bool) else None


class PluginContext:
    """Shared capabilities, built once per manager."""

    def __init__(
        self,
        config: Config,
        bot: EventSource,
        faults: FaultLog,
        manager: PluginManager | None = None,
    ):
        self.config = config
        self.bot = bot
        self.faults = faults
        self.manager = manager

    @property
    def bot_uin(self) -> int:
        return self.config.account.bot_uin

    def http(self, **kwargs: Any) -> httpx.AsyncClient:
        """An HTTP client for plugin use; close it (``async with``) when done."""
        kwargs.setdefault("timeout", 30.0)
        kwargs.setdefault("follow_redirects", True)
        return httpx.AsyncClient(**kwargs)

    # Messaging

    async def send_private_message(self, user_id: int, message: Any) -> Any:
        return await self.bot.send_private_msg(user_id, message)

    async def send_group_message(self, group_id: int, message: Any) -> Any:
        return await self.bot.send_group_msg(group_id, message)

    async def fake_message(self, target_id: int, nodes: list[dict[str, Any]], is_group: bool) -> Any:
        """Send a forward message built from ``segments.node`` entries."""
        if is_group:
            return await self.bot.send_forward_msg(nodes, group_id=target_id)
        return await self.bot.send_forward_msg(nodes, user_id=target_id)

    # Moderation

    async def delete_msg(self, message_id: int) -> None:
        await self.bot.delete_msg(message_id)

    async def kick(self, group_id: int, user_id: int, reject_add_request: bool = False) -> None:
        await self.bot.set_group_kick(group_id, user_id, reject_add_request)

    async def ban(self, group_id: int, user_id: int, duration: int = 1800) -> None:
        await self.bot.set_group_ban(group_id, user_id, duration)

    async def ban_all(self, group_id: int, enable: bool = True) -> None:
        await self.bot.set_group_whole_ban(group_id, enable)

    async def set_group_name(self, group_id: int, name: str) -> None:
        await self.bot.set_group_name(group_id, name)

    async def set_admin(self, group_id: int, user_id: int, enable: bool = True) -> None:
        await self.bot.set_group_admin(group_id, user_id, enable)

    async def set_title(self, group_id: int, user_id: int, title: str) -> None:
        await self.bot.set_group_special_title(group_id, user_id, title)

    async def approve_group(self, flag: str) -> None:
        await self.bot.set_group_add_request(flag, approve=True)

    async def reject_group(self, flag: str, reason: str = "") -> None:
        await self.bot.set_group_add_request(flag, approve=False, reason=reason)

    # Identity

    def is_master(self, target: Any) -> bool:
        """``target`` is a user id or an event carrying ``sender.user_id``."""
        user_id = _sender_id(target)
        return user_id is not None and user_id in self.config.account.master

    def is_admin(self, target: Any) -> bool:
        user_id = _sender_id(target)
        if user_id is None:
            return False
        return user_id in self.config.account.master or user_id in self.config.account.admins

    def has_right(self, target: Any) -> bool:
        return self.is_master(target) or self.is_admin(target)

    async def is_group_admin(self, group_id: int, user_id: int) -> bool:
        """Admins and the owner count. Lookup failures read as False."""
        try:
            info = await self.bot.get_group_member_info(group_id, user_id)
        except Exception as e:
            logger.error(f"Failed to check if user {user_id} is an admin in group {group_id}: {e}")
            return False
        return _field(info, "role") in ("admin", "owner")

    async def is_group_owner(self, group_id: int, user_id: int) -> bool:
        try:
            info = await self.bot.get_group_member_info(group_id, user_id)
        except Exception as e:
            logger.error(f"Failed to check if user {user_id} is the owner of group {group_id}: {e}")
            return False
        return _field(info, "role") == "owner"

    # Links and message parsing

    @staticmethod
    def get_group_avatar_link(group_id: int, size: int | None = None) -> str:
        size = size or DEFAULT_AVATAR_SIZE
        return f"https://p.qlogo.cn/gh/{group_id}/{group_id}/{size}"

    @staticmethod
    def get_qq_avatar_link(user_id: int, size: int | None = None) -> str:
        size = size or DEFAULT_AVATAR_SIZE
        return f"https://q2.qlogo.cn/headimg_dl?dst_uin={user_id}&spec={size}"

    @staticmethod
    def get_image_link(raw_message: str) -> str:
        match = IMAGE_URL_PATTERN.search(raw_message or "")
        if match and match.group(1):
            return match.group(1)
        logger.warning("No image link found in message")
        return ""

    async def get_direct_link(self, url: str) -> str:
        """
        Turn an expiring image URL into a direct link using the gateway's rkeys.

        appid 1406 uses the first rkey, 1407 the second. Returns "" when the
        URL cannot be rewritten.
        """
        rkeys = await self.bot.nc_get_rkey()
        if not rkeys:
            logger.error("Failed to fetch rkey, cannot build direct link")
            return ""

        appid_match = APPID_PATTERN.search(url)
        appid = appid_match.group(1) if appid_match else None
        index = {"1406": 0, "1407": 1}.get(appid)
        if index is None or len(rkeys) <= index:
            logger.error(f"Unknown appid in image URL: {appid}")
            return ""

        base = RKEY_BASE_PATTERN.match(url)
        rkey = _field(rkeys[index], "rkey", "")
        return f"{base.group(1)}{rkey}" if base else ""

    @staticmethod
    def get_message_id(raw_message: str) -> str:
        match = REPLY_ID_PATTERN.search(raw_message or "")
        return match.group(1) if match else ""

    @staticmethod
    def get_message_at(raw_message: str) -> list[int]:
        return [int(qq) for qq in AT_PATTERN.findall(raw_message or "")]

    @staticmethod
    def get_text(raw_message: str) -> str:
        return CQ_CODE_PATTERN.sub("", raw_message or "").strip()

    # Misc

    @staticmethod
    def md5(text: str) -> str:
        return hashlib.md5(text.encode("utf-8")).hexdigest()

    @staticmethod
    def random_int(low: int, high: int) -> int:
        """Inclusive on both ends."""
        return random.randint(low, high)

    @staticmethod
    def random_item(items: Sequence[Any]) -> Any:
        return random.choice(items)

    # Event helpers

    def add_reply_method(self, event: Any) -> Any:
        """
        Attach ``reply`` (and ``kick`` for group messages) bound to the event origin.

        Events that already carry a ``reply``, have no sender or group to
        answer, or do not accept attributes are returned unchanged.
        """
        if event is None or getattr(event, "reply", None) is not None:
            return event

        message_type = _field(event, "message_type") or "private"
        message_id = _field(event, "message_id")
        user_id = _field(event, "user_id")
        group_id = _field(event, "group_id")
        if user_id is None and group_id is None:
            return event
        bot = self.bot

        async def reply(message: Any, quote: bool = False) -> dict[str, Any]:
            content = segments.normalize(message)
            if quote and message_id:
                content.insert(0, segments.reply(message_id))
            try:
                if message_type == "group" or group_id:
                    response = await bot.send_msg(content, group_id=group_id)
                else:
                    response = await bot.send_msg(content, user_id=user_id)
            except Exception as e:
                logger.error(f"Failed to send reply: {e}")
                return {"message_id": 0}
            return {"message_id": _field(response, "message_id", 0)}

        try:
            event.reply = reply
        except (AttributeError, TypeError):
            return event

        if message_type == "group" and group_id:
            async def kick(target_id: int, reject_add_request: bool = False) -> None:
                try:
                    await bot.set_group_kick(group_id, target_id, reject_add_request)
                except Exception as e:
                    logger.error(f"Failed to kick user {target_id}: {e}")

            event.kick = kick

        return event

    def make_task_event(self) -> Event:
        """A blank group message event for scheduled callbacks, with ``reply`` attached."""
        event = Event({
            "post_type": "message",
            "message_type": "group",
            "sub_type": "normal",
            "time": int(time.time()),
            "self_id": self.bot_uin,
            "raw_message": "",
            "message": [],
            "message_id": 0,
            "user_id": 0,
            "group_id": 0,
            "sender": {"user_id": 0},
        })
        return self.add_reply_method(event)

    def task_context(self, plugin: str) -> TaskContext:
        return TaskContext(
            plugin=plugin,
            bot_uin=self.bot_uin,
            send_private_message=self.send_private_message,
            send_group_message=self.send_group_message,
        )


class PluginControl:
    """Plugin administration as seen from one plugin."""

    def __init__(self, manager: PluginManager, owner: str):
        self._manager = manager
        self._owner = owner

    def get_plugins(self) -> list[str]:
        return self._manager.get_plugins()

    def get_plugins_from_dir(self) -> list[str]:
        return self._manager.get_plugins_from_dir()

    def list_plugins(self) -> list[dict[str, Any]]:
        return self._manager.list_plugins()

    def counts(self) -> tuple[int, int]:
        return self._manager.counts()

    async def load(self, name: str) -> OperationResult:
        return await self._manager.load(name)

    async def enable(self, name: str) -> OperationResult:
        return await self._manager.enable(name)

    async def disable(self, name: str) -> OperationResult:
        return await self._manager.disable(name)

    async def reload(self, name: str | None = None) -> OperationResult:
        """Reload ``name``, or the calling plugin when omitted."""
        return await self._manager.reload(name or self._owner)


class PluginHandle:
    """
    Per-plugin view of the façade.

    Attribute access falls through to ``PluginContext``; callables come back
    wrapped (one wrapper per method, cached here) so failures are attributed
    to this plugin. ``handle`` and ``cron`` record into this plugin's setup
    capture.
    """

    def __init__(
        self,
        name: str,
        context: PluginContext,
        dispatcher: Dispatcher,
        registrar: TaskRegistrar,
    ):
        self._name = name
        self._context = context
        self._dispatcher = dispatcher
        self._registrar = registrar
        self._listeners: list[Subscription] = []
        self._wrappers: dict[str, Callable[..., Any]] = {}
        control = PluginControl(context.manager, name) if context.manager else None
        self.plugin = _InterceptedControl(self, control) if control else None

    @property
    def name(self) -> str:
        return self._name

    @property
    def listeners(self) -> list[Subscription]:
        return list(self._listeners)

    @property
    def tasks(self) -> list[Any]:
        return list(self._registrar.tasks)

    def handle(self, category: str, handler: Callable[[Any], Any]) -> None:
        """Register an event handler for ``category`` and its sub-categories."""
        self._listeners.append(self._dispatcher.create(self._name, category, handler))

    def cron(self, spec: Any, callback: Callable[..., Any] | None = None) -> None:
        """Register ``cron(expr, fn)`` or ``cron([(expr, fn), ...])``."""
        self._registrar.register(spec, callback)

    def cached_wrappers(self) -> int:
        return len(self._wrappers)

    def clear_cache(self) -> None:
        self._wrappers.clear()

    def release(self) -> None:
        """Drop everything the handle holds once its plugin is disabled."""
        self._wrappers.clear()
        self._listeners.clear()

    def __getattr__(self, attr: str) -> Any:
        if attr.startswith("_"):
            raise AttributeError(attr)
        return self._intercept(attr, getattr(self._context, attr))

    def _intercept(self, key: str, target: Any) -> Any:
        if not callable(target) or inspect.isclass(target):
            return target
        wrapper = self._wrappers.get(key)
        if wrapper is None:
            wrapper = self._wrap(key, target)
            self._wrappers[key] = wrapper
        return wrapper

    def _fault(self, method: str, error: Exception) -> None:
        logger.error(f"Plugin {self._name} call to {method}() failed: {error}")
        self._context.faults.record(self._name, ErrorKind.FACADE_FAULT, error, code=method)

    def _wrap(self, method: str, fn: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await fn(*args, **kwargs)
                except Exception as e:
                    self._fault(method, e)
                    raise

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                self._fault(method, e)
                raise

        return wrapper


class _InterceptedControl:
    """``ctx.plugin`` as seen through a handle: control calls are wrapped like any other."""

    def __init__(self, handle: PluginHandle, control: PluginControl):
        self._handle = handle
        self._control = control

    def __getattr__(self, attr: str) -> Any:
        if attr.startswith("_"):
            raise AttributeError(attr)
        return self._handle._intercept(f"plugin.{attr}", getattr(self._control, attr))
