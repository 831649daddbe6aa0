"""Async event bus bridging router callbacks to TUI consumers.

The router fires traffic events via its event callback; the EventBus
queues them for the TUI's consumer loop.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from webinsight.adapters.events import TrafficEvent, dict_to_event
from webinsight.engine.config import EventCallback

logger = logging.getLogger(__name__)


class EventBus:
    """Bounded async queue between the router and the TUI."""

    def __init__(self, maxsize: int = 5000, put_timeout: float = 5.0) -> None:
        self._queue: asyncio.Queue[TrafficEvent] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._closed = False

    async def _callback(self, data: dict[str, Any]) -> None:
        await self.emit(dict_to_event(data))

    def make_callback(self) -> EventCallback:
        """Return the async callback for MessageRouter(event_callback=...)."""
        return self._callback

    async def emit(self, event: TrafficEvent) -> None:
        if self._closed:
            return
        try:
            await asyncio.wait_for(self._queue.put(event), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %ss, dropping: %s (queue size: %d)",
                self._put_timeout, event.event_type, self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[TrafficEvent]:
        """Yield events as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield event

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
