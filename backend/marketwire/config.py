"""Runtime configuration read from environment variables."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace

logger = logging.getLogger(__name__)

_MINUTE = 60.0
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR


@dataclass(frozen=True, slots=True)
class CacheTTLs:
    """Time-to-live per response cache category, in seconds."""

    movers: float = 10 * _MINUTE
    quotes: float = 5 * _MINUTE
    heatmap: float = 15 * _MINUTE
    calendar: float = 6 * _HOUR
    correlation: float = 1 * _HOUR
    exchange: float = 15 * _MINUTE
    currency_strength: float = 5 * _MINUTE
    macro: float = 30 * _DAY

    def for_key(self, key: str) -> float:
        """Resolve the TTL for a cache key such as ``"correlation:30"``.

        The category is the part before the first colon, with dashes mapped
        to underscores. Unknown categories use the generic ``quotes`` TTL.
        """
        category = key.split(":", 1)[0].replace("-", "_")
        return getattr(self, category, self.quotes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> CacheTTLs:
        overrides: dict[str, float] = {}
        for f in fields(cls):
            raw = environ.get(f"MARKETWIRE_TTL_{f.name.upper()}", "").strip()
            if raw:
                overrides[f.name] = _parse_float(f"MARKETWIRE_TTL_{f.name.upper()}", raw, f.default)
        return cls(**overrides)


@dataclass(frozen=True, slots=True)
class MarketConfig:
    """Everything the service needs to know at construction time."""

    eodhd_api_key: str = ""
    twelvedata_api_key: str = ""
    massive_api_key: str = ""

    stream_base_url: str = "wss://ws.eodhistoricaldata.com/ws"
    eodhd_base_url: str = "https://eodhd.com/api"
    chart_base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart"
    twelvedata_base_url: str = "https://api.twelvedata.com"
    user_agent: str = "MarketwireBot/1.0"

    freshness_window: float = 60.0
    reconnect_delay: float = 5.0
    ping_interval: float = 30.0
    reference_interval: float = 5 * _MINUTE
    request_pause: float = 0.1
    request_timeout: float = 10.0
    simulator_interval: float = 0.5
    stale_retry_backoff: float = 30.0  # Wait before retrying a failed cache refresh

    rest_percent_quote_currencies: frozenset[str] = frozenset({"ZAR"})
    strength_threshold: float = 0.3
    movers_limit: int = 10
    stock_movers_limit: int = 6
    correlation_min_points: int = 5

    ttls: CacheTTLs = field(default_factory=CacheTTLs)

    @property
    def has_stream_credentials(self) -> bool:
        return bool(self.eodhd_api_key)

    def with_overrides(self, **changes) -> MarketConfig:
        """Return a copy with selected fields replaced (handy in tests)."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MarketConfig:
        """Build a config from environment variables.

        Provider keys use the names the providers document (``EODHD_API_KEY``,
        ``TWELVEDATA_API_KEY``, ``MASSIVE_API_KEY``). Tuning knobs use the
        ``MARKETWIRE_`` prefix, e.g. ``MARKETWIRE_RECONNECT_DELAY=2`` or
        ``MARKETWIRE_TTL_MOVERS=120``.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def num(name: str, default: float) -> float:
            raw = env.get(f"MARKETWIRE_{name}", "").strip()
            return _parse_float(f"MARKETWIRE_{name}", raw, default) if raw else default

        quotes_raw = env.get("MARKETWIRE_REST_PERCENT_QUOTES")
        if quotes_raw is None:
            quote_currencies = defaults.rest_percent_quote_currencies
        else:
            quote_currencies = frozenset(
                c.strip().upper() for c in quotes_raw.split(",") if c.strip()
            )

        return cls(
            eodhd_api_key=env.get("EODHD_API_KEY", "").strip(),
            twelvedata_api_key=env.get("TWELVEDATA_API_KEY", "").strip(),
            massive_api_key=env.get("MASSIVE_API_KEY", "").strip(),
            freshness_window=num("FRESHNESS_WINDOW", defaults.freshness_window),
            reconnect_delay=num("RECONNECT_DELAY", defaults.reconnect_delay),
            ping_interval=num("PING_INTERVAL", defaults.ping_interval),
            reference_interval=num("REFERENCE_INTERVAL", defaults.reference_interval),
            request_pause=num("REQUEST_PAUSE", defaults.request_pause),
            request_timeout=num("REQUEST_TIMEOUT", defaults.request_timeout),
            simulator_interval=num("SIMULATOR_INTERVAL", defaults.simulator_interval),
            stale_retry_backoff=num("STALE_RETRY_BACKOFF", defaults.stale_retry_backoff),
            rest_percent_quote_currencies=quote_currencies,
            strength_threshold=num("STRENGTH_THRESHOLD", defaults.strength_threshold),
            movers_limit=int(num("MOVERS_LIMIT", defaults.movers_limit)),
            ttls=CacheTTLs.from_env(env),
        )


def _parse_float(name: str, raw: str, default: float) -> float:
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default
