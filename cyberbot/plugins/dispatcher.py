"""Fan-out of adapter events to plugin handlers."""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from cyberbot.adapter.base import EventSource
from cyberbot.plugins.errors import ErrorKind, FaultLog

Handler = Callable[[Any], Any]


@dataclass(eq=False)
class Subscription:
    """A plugin's interest in one event category, wrapped for isolation."""
    plugin: str
    category: str
    handler: Handler
    wrapper: Callable[[Any], Awaitable[None]] | None = field(default=None, repr=False)
    active: bool = False


class Dispatcher:
    """
    Multiplexes one adapter listener per category to many plugin handlers.

    Each handler runs inside its own wrapper: exceptions are caught, logged
    with plugin attribution and recorded as ``HandlerFault``, so one plugin
    never breaks delivery to another.
    """

    def __init__(
        self,
        source: EventSource,
        faults: FaultLog,
        augment: Callable[[Any], Any] | None = None,
    ):
        self.source = source
        self.faults = faults
        self._augment = augment
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._fanouts: dict[str, Callable[[Any], Awaitable[None]]] = {}

    def create(self, plugin: str, category: str, handler: Handler) -> Subscription:
        """Build an inactive subscription with its isolation wrapper."""
        if not callable(handler):
            raise TypeError(f"Handler for '{category}' must be callable")
        subscription = Subscription(plugin=plugin, category=category, handler=handler)
        subscription.wrapper = self._wrap(subscription)
        return subscription

    def subscribe(self, subscription: Subscription) -> None:
        if subscription.active:
            return
        category = subscription.category
        if category not in self._subscriptions:
            self._subscriptions[category] = []
            fanout = self._make_fanout(category)
            self._fanouts[category] = fanout
            self.source.on(category, fanout)
        self._subscriptions[category].append(subscription)
        subscription.active = True

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Returns True if the subscription was active."""
        category = subscription.category
        subscriptions = self._subscriptions.get(category, [])
        subscription.active = False
        if subscription not in subscriptions:
            return False
        subscriptions.remove(subscription)
        if not subscriptions:
            del self._subscriptions[category]
            self.source.off(category, self._fanouts.pop(category))
        return True

    def unsubscribe_plugin(self, plugin: str) -> int:
        removed = 0
        for subscription in self.subscriptions(plugin=plugin):
            if self.unsubscribe(subscription):
                removed += 1
        return removed

    def subscriptions(self, category: str | None = None, plugin: str | None = None) -> list[Subscription]:
        if category is not None:
            pool = list(self._subscriptions.get(category, []))
        else:
            pool = [s for subs in self._subscriptions.values() for s in subs]
        if plugin is not None:
            pool = [s for s in pool if s.plugin == plugin]
        return pool

    def categories(self) -> list[str]:
        return list(self._subscriptions)

    def _make_fanout(self, category: str) -> Callable[[Any], Awaitable[None]]:
        async def fanout(event: Any) -> None:
            snapshot = list(self._subscriptions.get(category, []))
            if not snapshot:
                return
            if self._augment is not None:
                try:
                    self._augment(event)
                except Exception as e:
                    logger.warning(f"Could not prepare '{category}' event for handlers: {e}")
            await asyncio.gather(*(s.wrapper(event) for s in snapshot))

        fanout.__name__ = f"fanout[{category}]"
        return fanout

    def _wrap(self, subscription: Subscription) -> Callable[[Any], Awaitable[None]]:
        plugin = subscription.plugin
        category = subscription.category
        handler = subscription.handler

        async def wrapper(event: Any) -> None:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Plugin {plugin} handler for '{category}' failed: {e}")
                self.faults.record(plugin, ErrorKind.HANDLER_FAULT, e)
            return None

        return wrapper
