"""
standing.services.event_bus — In-Process Publish / Subscribe
=============================================================

Carries inbound forum events into the engine and outbound signals to
whatever notification layer subscribes.  Delivery is best effort: a
handler that raises is logged and skipped, the remaining handlers still
run, and nothing is persisted or retried.

Handlers for one topic are awaited **sequentially** in registration
order.  The causal chain within one activity (streak update → streak
bonus → badge checks) relies on that ordering.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Payload = dict[str, Any]
Handler = Callable[[Payload], Awaitable[None]]


class EventBus:
    """Topic → ordered list of async handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers[str(topic)].append(handler)
        logger.debug("Subscribed %s to %s", getattr(handler, "__qualname__", handler), topic)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._handlers.get(str(topic), [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, topic: str) -> list[Handler]:
        return list(self._handlers.get(str(topic), []))

    async def publish(self, topic: str, payload: Payload) -> int:
        """Deliver *payload* to every handler of *topic*.

        Returns the number of handlers that completed without raising.
        """
        delivered = 0
        for handler in self.handlers_for(topic):
            try:
                await handler(payload)
                delivered += 1
            except Exception:
                logger.exception(
                    "Handler %s failed for topic %s",
                    getattr(handler, "__qualname__", handler), topic,
                )
        return delivered
