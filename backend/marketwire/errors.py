"""Exception hierarchy for the market data layer."""

from __future__ import annotations


class MarketDataError(Exception):
    """Base class for every error raised by marketwire."""


class UpstreamError(MarketDataError):
    """An upstream provider call did not produce usable data."""

    def __init__(self, message: str, symbol: str | None = None) -> None:
        super().__init__(message)
        self.symbol = symbol


class UpstreamTransportError(UpstreamError):
    """Connection drop, timeout or non-success HTTP status."""


class UpstreamDataError(UpstreamError):
    """Response arrived but required fields were missing or non-numeric."""


class CacheMissWithNoFallback(MarketDataError):
    """Refresh failed and there was no previous payload to serve stale."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No cached payload for {key!r} and refresh failed")
        self.key = key


class SubscriptionClosed(MarketDataError):
    """The hub closed a subscription (dropped as too slow, or unsubscribed)."""
