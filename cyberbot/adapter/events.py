"""Event model for payloads delivered by the gateway."""

from types import SimpleNamespace
from typing import Any


def event_name(payload: dict[str, Any]) -> str:
    """
    Build the dotted category of a raw payload.

    ``{"post_type": "message", "message_type": "group", "sub_type": "normal"}``
    becomes ``message.group.normal``.
    """
    post_type = payload.get("post_type")
    if not post_type:
        return "unknown"
    parts = [post_type]
    detail = payload.get(f"{post_type}_type")
    if detail:
        parts.append(detail)
        sub_type = payload.get("sub_type")
        if sub_type:
            parts.append(sub_type)
    return ".".join(str(p) for p in parts)


class Event(SimpleNamespace):
    """
    Attribute view over an event payload.

    Nested objects (``sender``, ``params``) are wrapped too; lists such as the
    ``message`` segment array stay plain. Handlers and the runtime may attach
    callables (``reply``, ``kick``) which are excluded from ``to_dict``.
    """

    def __init__(self, payload: dict[str, Any] | None = None, **extra: Any):
        data = dict(payload or {})
        data.update(extra)
        super().__init__(**{k: _wrap(v) for k, v in data.items()})

    @property
    def is_group(self) -> bool:
        return self.get("message_type") == "group" or self.get("group_id") is not None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: str) -> bool:
        return key in self.__dict__

    def to_dict(self) -> dict[str, Any]:
        return {k: _unwrap(v) for k, v in self.__dict__.items() if not callable(v)}


def _wrap(value: Any) -> Any:
    if isinstance(value, dict):
        return Event(value)
    return value


def _unwrap(value: Any) -> Any:
    if isinstance(value, Event):
        return value.to_dict()
    if isinstance(value, list):
        return [_unwrap(v) for v in value]
    return value
