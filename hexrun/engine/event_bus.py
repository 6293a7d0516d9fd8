"""Delivery of canonical events from a backend to its caller.

A backend publishes through an EventSink, which wraps either a direct
callback or an EventBus. The EventBus is a bounded asyncio queue that
applies backpressure to producers and drops events (with an error log)
when the consumer stalls for longer than put_timeout.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from .config import EventCallback, fire_event
from .models import StreamEvent

logger = logging.getLogger(__name__)


class EventBus:
    """Bounded async queue bridging backend events to a consumer loop."""

    def __init__(self, maxsize: int = 64, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def publish(self, event: StreamEvent) -> bool:
        """Queue an event. Returns False if it was dropped."""
        if self._closed:
            logger.debug("EventBus closed, ignoring %s event", event.type.value)
            return False
        try:
            await asyncio.wait_for(
                self._queue.put(event), timeout=self._put_timeout,
            )
            return True
        except asyncio.TimeoutError:
            self.dropped += 1
            logger.error(
                "EventBus queue blocked for %gs, dropping: %s (queue size: %d)",
                self._put_timeout,
                event.type.value,
                self._queue.qsize(),
            )
            return False

    def make_callback(self) -> EventCallback:
        """Return an async callback that publishes into this bus."""
        async def _callback(event: StreamEvent) -> None:
            await self.publish(event)
        return _callback

    async def consume(self) -> AsyncIterator[StreamEvent]:
        """Yield events as they arrive. Stops after close() once drained."""
        while True:
            if self._closed and self._queue.empty():
                return
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            yield event

    def close(self) -> None:
        """Stop accepting events; consume() ends after draining."""
        self._closed = True


class EventSink:
    """The single place a backend sends its events.

    Accepts a plain or async callback, an EventBus, or neither (events
    are discarded). Observer failures are logged and never propagate.
    """

    def __init__(
        self,
        callback: EventCallback | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        if callback is not None and event_bus is not None:
            raise ValueError("pass either callback or event_bus, not both")
        if event_bus is not None:
            callback = event_bus.make_callback()
        self._callback = callback

    async def emit(self, event: StreamEvent) -> None:
        await fire_event(self._callback, event)
