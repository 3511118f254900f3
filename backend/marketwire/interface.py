"""Abstract interface for tick-producing market data sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

from .models import Tick

TickSink = Callable[[Tick], None]


class MarketDataSource(ABC):
    """Contract for anything that pushes ticks into the service.

    Implementations hand every normalized Tick to a ``TickSink`` on their
    own schedule; the sink stores it and fans it out. Downstream code never
    calls a source directly for prices.

    Lifecycle:
        source = UpstreamStream(feed, url, sink, references, config)
        await source.start()
        # ... app runs ...
        await source.stop()
    """

    @abstractmethod
    async def start(self) -> None:
        """Begin producing ticks in a background task.

        Must be called exactly once. Calling start() twice is undefined behavior.
        """

    @abstractmethod
    async def stop(self) -> None:
        """Stop the background task and release resources.

        Safe to call multiple times. After stop(), the source will not call
        the sink again.
        """

    @abstractmethod
    def get_symbols(self) -> list[str]:
        """Return the fixed list of symbols this source produces."""
