"""Publish/subscribe fan-out of normalized ticks to downstream clients."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from threading import Lock

from .errors import SubscriptionClosed
from .models import Tick

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], Iterable[Tick]]


class Subscription:
    """One connected downstream channel.

    Holds a FIFO queue of serialized messages. The hub only ever puts onto
    it; the transport (WebSocket or SSE handler) drains it.

    Once closed, messages already queued are still delivered, then ``get``
    raises SubscriptionClosed and async iteration ends.
    """

    def __init__(self, max_queue: int) -> None:
        # Unbounded so the close marker always fits; offer() enforces max_queue
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._max_queue = max_queue
        self.dropped = False
        self.closed = False

    def offer(self, message: str) -> bool:
        if self.closed or self.pending() >= self._max_queue:
            return False
        self._queue.put_nowait(message)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    async def get(self) -> str:
        message = await self._queue.get()
        if message is None:
            # Leave the marker for any later reader
            self._queue.put_nowait(None)
            raise SubscriptionClosed("subscription closed")
        return message

    def pending(self) -> int:
        return self._queue.qsize() - (1 if self.closed else 0)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        while True:
            try:
                yield await self.get()
            except SubscriptionClosed:
                return


class BroadcastHub:
    """Fans every published tick out to all live subscribers.

    New subscribers first receive one message per currently known tick
    (from ``snapshot_provider``) so they are not blank until the next
    update. Sends are fire-and-forget: a subscriber whose queue is full is
    dropped without affecting anyone else.
    """

    def __init__(self, snapshot_provider: SnapshotProvider | None = None, max_queue: int = 1000) -> None:
        self._snapshot_provider = snapshot_provider
        self._max_queue = max_queue
        self._subscribers: set[Subscription] = set()
        self._lock = Lock()
        self._published: int = 0

    def publish(self, tick: Tick) -> int:
        """Send ``tick`` to every subscriber. Returns how many received it."""
        message = json.dumps(tick.to_message())
        self._published += 1

        delivered = 0
        for sub in self._current():
            if sub.offer(message):
                delivered += 1
            else:
                logger.warning("Dropping slow subscriber (%d messages pending)", sub.pending())
                sub.dropped = True
                sub.close()
                self._remove(sub)
        return delivered

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[Subscription]:
        """Register a subscriber for the lifetime of the ``async with`` block."""
        sub = Subscription(self._max_queue)
        # Snapshot is queued before registration so it precedes live messages
        for tick in self._snapshot():
            sub.offer(json.dumps(tick.to_message()))
        with self._lock:
            self._subscribers.add(sub)
        logger.info("Subscriber connected (%d total)", self.subscriber_count)
        try:
            yield sub
        finally:
            self._remove(sub)
            sub.close()
            logger.info("Subscriber disconnected (%d remaining)", self.subscriber_count)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def published(self) -> int:
        return self._published

    def _snapshot(self) -> list[Tick]:
        if self._snapshot_provider is None:
            return []
        return list(self._snapshot_provider())

    def _current(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscribers)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(sub)
