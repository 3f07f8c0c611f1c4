"""Event multiplexer.

Merges the stdout and stderr readers into one bounded queue in arrival
order. Each reader awaits its own puts, so events of one origin can never
overtake each other; a full queue suspends the producing reader, and the
unread OS pipe in turn blocks the child.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .events import LineEvent, Origin

__all__ = ["EventMultiplexer", "DEFAULT_QUEUE_CAPACITY"]

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_CAPACITY = 256


@dataclass(frozen=True)
class _EndOfStream:
    origin: Origin


class EventMultiplexer:
    """Single-consumer queue of LineEvents from several origins.

    Producers call put()/close(); exactly one consumer calls get().
    """

    def __init__(
        self,
        capacity: int = DEFAULT_QUEUE_CAPACITY,
        origins: Iterable[Origin] = (Origin.OUTPUT, Origin.ERROR),
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._queue: asyncio.Queue[LineEvent | _EndOfStream] = asyncio.Queue(
            maxsize=capacity
        )
        self._open: set[Origin] = set(origins)
        self._last_sequence: dict[Origin, int] = {origin: 0 for origin in self._open}

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    @property
    def exhausted(self) -> bool:
        """True once every origin has reached end-of-stream and been consumed."""
        return not self._open

    async def put(self, event: LineEvent) -> None:
        """Queue an event, suspending while the queue is full."""
        last = self._last_sequence.get(event.origin)
        if last is None:
            raise ValueError(f"Unknown origin: {event.origin.value}")
        if event.sequence <= last:
            raise ValueError(
                f"Out of order {event.origin.value} event: "
                f"sequence {event.sequence} after {last}"
            )
        self._last_sequence[event.origin] = event.sequence
        await self._queue.put(event)

    async def close(self, origin: Origin) -> None:
        """Signal that no further events will arrive from origin."""
        await self._queue.put(_EndOfStream(origin))

    async def get(self) -> LineEvent | None:
        """Return the next event, or None once all origins have ended."""
        while self._open:
            item = await self._queue.get()
            if isinstance(item, _EndOfStream):
                self._open.discard(item.origin)
                continue
            return item
        return None

    def get_nowait(self) -> LineEvent | None:
        """Non-blocking get().

        Raises:
            asyncio.QueueEmpty: If no event is ready and an origin is still open
        """
        while self._open:
            item = self._queue.get_nowait()
            if isinstance(item, _EndOfStream):
                self._open.discard(item.origin)
                continue
            return item
        return None
