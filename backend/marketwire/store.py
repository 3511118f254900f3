"""Thread-safe in-memory tick store with a freshness window."""

from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock

from .models import Category, ReferenceClose, Tick


class TickStore:
    """Latest normalized tick per symbol for one category.

    Writers: upstream stream feeds, the simulator, and the REST fallback.
    Readers: pull-side service calls and the broadcast hub's connect snapshot.

    A tick is only authoritative while it is younger than
    ``freshness_window``; callers wanting a display value use ``get_fresh``
    and fall through to REST when it returns None.
    """

    def __init__(
        self,
        category: Category,
        freshness_window: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.category = category
        self.freshness_window = freshness_window
        self._clock = clock
        self._ticks: dict[str, Tick] = {}
        self._lock = Lock()
        self._version: int = 0  # Bumped on every accepted write

    def put(self, tick: Tick) -> None:
        """Overwrite the entry for ``tick.symbol``. Last write wins."""
        with self._lock:
            self._ticks[tick.symbol] = tick
            self._version += 1

    def put_if_newer(self, tick: Tick) -> bool:
        """Write unless the held tick was observed later. Returns True if written.

        Used by the REST path so a slow poll cannot overwrite a newer
        streamed value.
        """
        with self._lock:
            held = self._ticks.get(tick.symbol)
            if held is not None and held.observed_at > tick.observed_at:
                return False
            self._ticks[tick.symbol] = tick
            self._version += 1
            return True

    def get(self, symbol: str) -> Tick | None:
        """Latest tick regardless of age, or None if never seen."""
        with self._lock:
            return self._ticks.get(symbol)

    def get_fresh(self, symbol: str) -> Tick | None:
        """Latest tick if still inside the freshness window, else None."""
        tick = self.get(symbol)
        if tick is None or not self.is_fresh(tick):
            return None
        return tick

    def is_fresh(self, tick: Tick) -> bool:
        return self._clock() - tick.observed_at < self.freshness_window

    def snapshot(self) -> dict[str, Tick]:
        """Shallow copy of every held tick."""
        with self._lock:
            return dict(self._ticks)

    def fresh_snapshot(self) -> dict[str, Tick]:
        return {s: t for s, t in self.snapshot().items() if self.is_fresh(t)}

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._ticks)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._ticks


class ReferenceBook:
    """Previous-close values per symbol, refreshed on their own timer."""

    def __init__(self) -> None:
        self._refs: dict[str, ReferenceClose] = {}
        self._lock = Lock()

    def set(self, ref: ReferenceClose) -> None:
        with self._lock:
            self._refs[ref.symbol] = ref

    def get(self, symbol: str) -> ReferenceClose | None:
        with self._lock:
            return self._refs.get(symbol)

    def previous_close(self, symbol: str) -> float | None:
        ref = self.get(symbol)
        return ref.previous_close if ref else None

    def rest_change_percent(self, symbol: str) -> float | None:
        ref = self.get(symbol)
        return ref.rest_change_percent if ref else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._refs)
