"""Async event bus bridging engine callbacks to front-end consumers.

The engine fires events through ChatConfig.event_callback. The
EventBus queues them, typed, for a front end's consumer loop, so the
engine never depends on how the UI binds to state.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from freechat.adapters.events import ChatEvent, dict_to_event

logger = logging.getLogger(__name__)

# Seconds a put may block on a full queue before the event is dropped.
PUT_TIMEOUT_SECONDS = 30.0


class EventBus:
    """Async queue bridging engine callbacks to event consumers."""

    def __init__(self, maxsize: int = 5000) -> None:
        self._queue: asyncio.Queue[ChatEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _put(self, event: ChatEvent) -> None:
        try:
            # Backpressure instead of dropping right away
            await asyncio.wait_for(self._queue.put(event), timeout=PUT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %.0fs, dropping: %s (queue size: %d)",
                PUT_TIMEOUT_SECONDS,
                event.event_type,
                self._queue.qsize(),
            )

    async def _callback(self, data: dict[str, Any]) -> None:
        """Callback to pass to ChatConfig.event_callback."""
        if self._closed:
            return
        await self._put(dict_to_event(data))

    def make_callback(self):
        """Return the async callback for ChatConfig.event_callback."""
        return self._callback

    async def emit(self, event: ChatEvent) -> None:
        """Manually emit an event (for front-end generated events)."""
        if self._closed:
            return
        await self._put(event)

    async def consume(self) -> AsyncIterator[ChatEvent]:
        """Yield events as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield event

    def drain(self) -> list[ChatEvent]:
        """Return and remove every queued event without waiting."""
        events: list[ChatEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True

    def reset(self) -> None:
        """Drop leftover events and re-open the bus."""
        self.drain()
        self._closed = False
