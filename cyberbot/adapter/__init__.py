"""Event source adapter boundary."""

from cyberbot.adapter.base import EventSource
from cyberbot.adapter.events import Event, event_name

__all__ = ["EventSource", "Event", "event_name"]
