"""Data models for market data."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Category(str, Enum):
    """Asset class of an instrument. The value is the push message ``type``."""

    EQUITY = "equity"
    INDEX = "index"
    FOREX = "forex"
    COMMODITY = "commodity"
    CRYPTO = "crypto"


@dataclass(frozen=True, slots=True)
class Instrument:
    """A tracked symbol and the identifiers each upstream knows it by."""

    symbol: str  # Stream symbol, unique within its category
    name: str
    category: Category
    rest_symbol: str | None = None  # Point-in-time quote endpoint
    chart_symbol: str | None = None  # Chart / historical series endpoint


@dataclass(frozen=True, slots=True)
class Tick:
    """Immutable, normalized price observation for one symbol."""

    symbol: str
    category: Category
    price: float
    change_percent: float
    observed_at: float = field(default_factory=time.time)  # Unix seconds
    change: float | None = None
    name: str | None = None
    source: str = "stream"

    def age(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.observed_at

    @property
    def trend(self) -> str:
        return "positive" if self.change_percent >= 0 else "negative"

    def to_message(self) -> dict[str, Any]:
        """Serialize for the push channel (WebSocket / SSE)."""
        return {
            "type": self.category.value,
            "symbol": self.symbol,
            "name": self.name or self.symbol,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "timestamp": self.observed_at,
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class ReferenceClose:
    """Previous session close used as the percent-change denominator."""

    symbol: str
    previous_close: float
    as_of: float = field(default_factory=time.time)
    rest_change_percent: float | None = None


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A response cache payload with the moment it was produced."""

    key: str
    payload: Any
    cached_at: float
    ttl: float
    stale: bool = False
    retry_at: float | None = None  # Set on stale entries: next refresh attempt

    def is_expired(self, now: float) -> bool:
        if self.retry_at is not None:
            return now >= self.retry_at
        return now - self.cached_at >= self.ttl

    def as_response(self) -> Any:
        """Payload as handed to a caller, tagged when served stale."""
        if not self.stale:
            return self.payload
        if isinstance(self.payload, dict):
            return {**self.payload, "stale": True}
        return {"data": self.payload, "stale": True}


@dataclass(frozen=True, slots=True)
class Mover:
    """An asset ranked by magnitude of percentage change."""

    name: str
    symbol: str
    raw_change: float
    kind: str

    @property
    def performance(self) -> str:
        sign = "+" if self.raw_change >= 0 else ""
        return f"{sign}{self.raw_change:.2f}%"

    @property
    def trend(self) -> str:
        return "positive" if self.raw_change >= 0 else "negative"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "performance": self.performance,
            "rawChange": self.raw_change,
            "type": self.kind,
            "trend": self.trend,
        }


def is_usable(value: float | None) -> bool:
    """True for a finite number (rejects None, NaN and infinities)."""
    return value is not None and math.isfinite(value)


def compute_change_percent(
    price: float,
    reference_close: float | None,
    provider_percent: float | None = None,
) -> float:
    """Percent change from the reference close, with graceful degradation.

    Uses ``(price - reference_close) / reference_close * 100`` when the
    reference is finite and nonzero, otherwise a finite provider-supplied
    percent, otherwise 0.
    """
    if is_usable(reference_close) and reference_close != 0:
        return (price - reference_close) / reference_close * 100
    if is_usable(provider_percent):
        return float(provider_percent)
    return 0.0


def parse_float(value: Any) -> float | None:
    """Parse a provider number; returns None for missing, "NA" or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
