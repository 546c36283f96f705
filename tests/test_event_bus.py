"""
tests/test_event_bus.py — Unit Tests for the In-Process Event Bus
==================================================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from standing.services.event_bus import EventBus


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestEventBus:
    def test_handlers_run_in_registration_order(self):
        bus = EventBus()
        calls: list[str] = []

        async def first(payload):
            await asyncio.sleep(0)
            calls.append("first")

        async def second(payload):
            calls.append("second")

        bus.subscribe("topic", first)
        bus.subscribe("topic", second)

        assert run_async(bus.publish("topic", {})) == 2
        assert calls == ["first", "second"]

    def test_failing_handler_is_isolated(self):
        bus = EventBus()
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        bus.subscribe("topic", broken)
        bus.subscribe("topic", healthy)

        assert run_async(bus.publish("topic", {"x": 1})) == 1
        healthy.assert_awaited_once_with({"x": 1})

    def test_no_subscribers(self):
        assert run_async(EventBus().publish("nothing", {})) == 0

    def test_unsubscribe(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe("topic", handler)
        bus.unsubscribe("topic", handler)
        bus.unsubscribe("topic", handler)

        assert bus.handlers_for("topic") == []
        run_async(bus.publish("topic", {}))
        handler.assert_not_awaited()
