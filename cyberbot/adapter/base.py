"""Base interface for gateway connections."""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable

from loguru import logger

from cyberbot.adapter import segments
from cyberbot.adapter.events import Event, event_name

Listener = Callable[[Any], Any]


def matches(category: str, name: str) -> bool:
    """True when ``name`` is ``category`` or one of its sub-categories."""
    return name == category or name.startswith(category + ".")


class EventSource(ABC):
    """
    Abstract connection to a OneBot-style chat gateway.

    Concrete adapters own the transport: they implement ``connect``,
    ``disconnect`` and ``_send_action``, and feed every inbound payload to
    ``dispatch``. Everything above the transport (listener table, category
    fan-out, typed API calls) lives here.
    """

    name: str = "base"

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}

    @abstractmethod
    async def connect(self) -> None:
        """Open the gateway connection and start receiving events."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection and release transport resources."""
        pass

    @abstractmethod
    async def _send_action(self, action: str, params: dict[str, Any]) -> Any:
        """
        Send one API action over the transport.

        Returns the response ``data`` or raises on failure.
        """
        pass

    def on(self, category: str, listener: Listener) -> None:
        """Subscribe a listener to a category and all of its sub-categories."""
        self._listeners.setdefault(category, []).append(listener)

    def off(self, category: str, listener: Listener) -> bool:
        """
        Remove a listener.

        Returns:
            True if the listener was found and removed.
        """
        listeners = self._listeners.get(category, [])
        if listener not in listeners:
            return False
        listeners.remove(listener)
        if not listeners:
            del self._listeners[category]
        return True

    def listener_count(self, category: str | None = None) -> int:
        if category:
            return len(self._listeners.get(category, []))
        return sum(len(v) for v in self._listeners.values())

    async def emit(self, name: str, payload: Any = None) -> None:
        """
        Deliver an event to every listener whose category matches ``name``.

        Listeners run concurrently, so a hung listener never holds back the
        others. Listener errors are logged and do not stop delivery.
        """
        if payload is None or isinstance(payload, dict):
            event = Event(payload)
        else:
            event = payload
        targets = [
            listener
            for category, listeners in list(self._listeners.items())
            if matches(category, name)
            for listener in list(listeners)
        ]
        if targets:
            await asyncio.gather(*(self._deliver(name, listener, event) for listener in targets))

    @staticmethod
    async def _deliver(name: str, listener: Listener, event: Any) -> None:
        try:
            result = listener(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Listener for '{name}' failed: {e}")

    async def dispatch(self, payload: dict[str, Any]) -> None:
        """Entry point for raw inbound payloads from the transport."""
        await self.emit(event_name(payload), payload)

    async def call(self, action: str, **params: Any) -> Any:
        """
        Invoke a gateway API action.

        Emits ``api.preSend`` before sending. A failed call emits
        ``api.response.failure`` and re-raises.
        """
        await self.emit("api.preSend", {"action": action, "params": params})
        try:
            return await self._send_action(action, params)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.emit(
                "api.response.failure",
                {"action": action, "params": params, "message": str(e)},
            )
            raise

    # Messaging

    async def send_msg(self, message: Any, *, user_id: int | None = None, group_id: int | None = None) -> Any:
        if group_id is not None:
            return await self.send_group_msg(group_id, message)
        if user_id is not None:
            return await self.send_private_msg(user_id, message)
        raise ValueError("send_msg requires user_id or group_id")

    async def send_private_msg(self, user_id: int, message: Any) -> Any:
        return await self.call("send_private_msg", user_id=user_id, message=segments.normalize(message))

    async def send_group_msg(self, group_id: int, message: Any) -> Any:
        return await self.call("send_group_msg", group_id=group_id, message=segments.normalize(message))

    async def send_forward_msg(
        self,
        messages: list[dict[str, Any]],
        *,
        user_id: int | None = None,
        group_id: int | None = None,
    ) -> Any:
        params: dict[str, Any] = {"messages": messages}
        if group_id is not None:
            params["group_id"] = group_id
        elif user_id is not None:
            params["user_id"] = user_id
        else:
            raise ValueError("send_forward_msg requires user_id or group_id")
        return await self.call("send_forward_msg", **params)

    async def delete_msg(self, message_id: int) -> Any:
        return await self.call("delete_msg", message_id=message_id)

    # Group moderation

    async def set_group_kick(self, group_id: int, user_id: int, reject_add_request: bool = False) -> Any:
        return await self.call(
            "set_group_kick", group_id=group_id, user_id=user_id, reject_add_request=reject_add_request
        )

    async def set_group_ban(self, group_id: int, user_id: int, duration: int = 1800) -> Any:
        return await self.call("set_group_ban", group_id=group_id, user_id=user_id, duration=duration)

    async def set_group_whole_ban(self, group_id: int, enable: bool = True) -> Any:
        return await self.call("set_group_whole_ban", group_id=group_id, enable=enable)

    async def set_group_name(self, group_id: int, group_name: str) -> Any:
        return await self.call("set_group_name", group_id=group_id, group_name=group_name)

    async def set_group_admin(self, group_id: int, user_id: int, enable: bool = True) -> Any:
        return await self.call("set_group_admin", group_id=group_id, user_id=user_id, enable=enable)

    async def set_group_special_title(
        self, group_id: int, user_id: int, special_title: str, duration: int = -1
    ) -> Any:
        return await self.call(
            "set_group_special_title",
            group_id=group_id,
            user_id=user_id,
            special_title=special_title,
            duration=duration,
        )

    async def set_group_add_request(
        self, flag: str, sub_type: str = "add", approve: bool = True, reason: str = ""
    ) -> Any:
        return await self.call(
            "set_group_add_request", flag=flag, sub_type=sub_type, approve=approve, reason=reason
        )

    # Queries

    async def get_group_member_info(self, group_id: int, user_id: int, no_cache: bool = False) -> Any:
        return await self.call("get_group_member_info", group_id=group_id, user_id=user_id, no_cache=no_cache)

    async def get_login_info(self) -> Any:
        return await self.call("get_login_info")

    async def get_friend_list(self) -> Any:
        return await self.call("get_friend_list")

    async def get_group_list(self) -> Any:
        return await self.call("get_group_list")

    async def get_version_info(self) -> Any:
        return await self.call("get_version_info")

    async def nc_get_rkey(self) -> Any:
        return await self.call("nc_get_rkey")
