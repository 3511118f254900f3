"""TTL response cache with single-flight refresh per key."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from threading import Lock
from typing import Any

from .config import CacheTTLs
from .errors import CacheMissWithNoFallback
from .models import CacheEntry

logger = logging.getLogger(__name__)

RefreshFn = Callable[[], Awaitable[Any]]


class ResponseCache:
    """Bounds outbound fetches to at most one refresh per key per TTL window.

    Keys may be composite (``"correlation:30"``); the TTL is looked up from
    the category before the colon, and each key expires independently.
    """

    def __init__(
        self,
        ttls: CacheTTLs | None = None,
        clock: Callable[[], float] = time.time,
        retry_backoff: float = 30.0,
    ) -> None:
        self._ttls = ttls or CacheTTLs()
        self._clock = clock
        self._retry_backoff = retry_backoff
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = Lock()

    async def get_or_refresh(
        self,
        key: str,
        refresh_fn: RefreshFn,
        ttl: float | None = None,
    ) -> CacheEntry:
        """Serve ``key`` from cache, refreshing it once when expired.

        Concurrent readers of an expired key wait on the same refresh. If the
        refresh fails and a previous payload exists it is returned with
        ``stale=True`` and served as-is for ``retry_backoff`` seconds before the
        next attempt; with nothing to fall back on, CacheMissWithNoFallback
        is raised from the refresh error.
        """
        ttl = self._ttls.for_key(key) if ttl is None else ttl

        entry = self.peek(key)
        if entry is not None and not entry.is_expired(self._clock()):
            return entry

        async with self._lock_for(key):
            # Another reader may have refreshed while we waited for the lock
            entry = self.peek(key)
            if entry is not None and not entry.is_expired(self._clock()):
                return entry

            try:
                payload = await refresh_fn()
            except Exception as e:
                if entry is None:
                    logger.error("Refresh for %s failed with nothing cached: %s", key, e)
                    raise CacheMissWithNoFallback(key) from e
                logger.warning(
                    "Refresh for %s failed, serving stale payload for %.0fs: %s", key, self._retry_backoff, e
                )
                stale = CacheEntry(
                    key=key,
                    payload=entry.payload,
                    cached_at=entry.cached_at,
                    ttl=entry.ttl,
                    stale=True,
                    retry_at=self._clock() + self._retry_backoff,
                )
                with self._guard:
                    self._entries[key] = stale
                return stale

            fresh = CacheEntry(key=key, payload=payload, cached_at=self._clock(), ttl=ttl)
            with self._guard:
                self._entries[key] = fresh
            logger.debug("Cached %s for %.0fs", key, ttl)
            return fresh

    def peek(self, key: str) -> CacheEntry | None:
        """Current entry for ``key`` without refreshing, expired or not."""
        with self._guard:
            return self._entries.get(key)

    def invalidate(self, key: str) -> None:
        with self._guard:
            self._entries.pop(key, None)

    def keys(self) -> list[str]:
        with self._guard:
            return list(self._entries)

    def _lock_for(self, key: str) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = asyncio.Lock()
            return lock
