"""Request/response upstream clients used when the stream has nothing fresh."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from .config import MarketConfig
from .errors import UpstreamDataError, UpstreamTransportError
from .models import Instrument, Mover, ReferenceClose, Tick, compute_change_percent, is_usable, parse_float

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Quote:
    """Point-in-time quote as reported by the REST endpoint."""

    symbol: str
    price: float
    previous_close: float | None
    change: float | None
    change_percent: float | None
    observed_at: float


class RestFallbackClient:
    """Async wrapper over the point-in-time, chart and screener endpoints.

    Every call carries the configured timeout. Transport failures raise
    UpstreamTransportError, malformed payloads raise UpstreamDataError; the
    caller decides whether to skip the symbol.
    """

    def __init__(self, config: MarketConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._http = http_client or httpx.AsyncClient(
            timeout=config.request_timeout,
            headers={"User-Agent": config.user_agent},
        )
        self._massive: Any = None  # Lazy: only built when stock movers are requested

    async def aclose(self) -> None:
        await self._http.aclose()
        self._massive = None

    # --- Point-in-time quotes ---

    async def fetch_quote(self, inst: Instrument) -> Quote:
        if not inst.rest_symbol:
            raise UpstreamDataError(f"{inst.symbol} has no quote endpoint symbol", inst.symbol)

        data = await self._get_json(
            f"{self._config.eodhd_base_url}/real-time/{inst.rest_symbol}",
            params={"api_token": self._config.eodhd_api_key, "fmt": "json"},
            symbol=inst.symbol,
        )
        if not isinstance(data, dict):
            raise UpstreamDataError(f"Unexpected quote payload for {inst.symbol}", inst.symbol)

        price = parse_float(data.get("close"))
        if price is None:
            raise UpstreamDataError(f"Missing close for {inst.symbol}", inst.symbol)

        timestamp = parse_float(data.get("timestamp"))
        return Quote(
            symbol=inst.symbol,
            price=price,
            previous_close=parse_float(data.get("previousClose")),
            change=parse_float(data.get("change")),
            change_percent=parse_float(data.get("change_p")),
            observed_at=timestamp if timestamp else time.time(),
        )

    async def fetch_one(self, inst: Instrument) -> Tick:
        return quote_to_tick(inst, await self.fetch_quote(inst))

    async def fetch_reference(self, inst: Instrument) -> ReferenceClose:
        quote = await self.fetch_quote(inst)
        ref = quote_reference(quote, time.time())
        if ref is None:
            raise UpstreamDataError(f"No previous close or percent for {inst.symbol}", inst.symbol)
        return ref

    # --- Historical series ---

    async def fetch_series(self, chart_symbol: str, interval: str = "1d", range_: str = "5d") -> list[float]:
        """Ordered closes for ``chart_symbol``; null entries are dropped."""
        data = await self._get_json(
            f"{self._config.chart_base_url}/{chart_symbol}",
            params={"interval": interval, "range": range_},
            symbol=chart_symbol,
        )
        try:
            result = data["chart"]["result"][0]
            closes = result["indicators"]["quote"][0]["close"]
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamDataError(f"No chart data for {chart_symbol}: {e!r}", chart_symbol) from e
        if not isinstance(closes, list):
            raise UpstreamDataError(f"Malformed closes for {chart_symbol}", chart_symbol)
        return [float(c) for c in closes if isinstance(c, (int, float)) and not isinstance(c, bool)]

    async def fetch_daily_series(self, chart_symbol: str, days: int) -> list[float]:
        return await self.fetch_series(chart_symbol, interval="1d", range_=f"{days}d")

    # --- Movers sources ---

    async def fetch_forex_percent_changes(self, pairs: list[str]) -> dict[str, float]:
        """Batch percent change per ``"EUR/USD"``-style pair from Twelve Data."""
        if not pairs or not self._config.twelvedata_api_key:
            return {}
        data = await self._get_json(
            f"{self._config.twelvedata_base_url}/quote",
            params={"symbol": ",".join(pairs), "apikey": self._config.twelvedata_api_key},
        )
        if not isinstance(data, dict):
            raise UpstreamDataError("Unexpected forex quote payload")
        if len(pairs) == 1 and "percent_change" in data:
            data = {pairs[0]: data}

        result: dict[str, float] = {}
        for pair in pairs:
            entry = data.get(pair)
            pct = parse_float(entry.get("percent_change")) if isinstance(entry, dict) else None
            if pct is None:
                logger.debug("No percent change for %s", pair)
                continue
            result[pair] = pct
        return result

    async def fetch_stock_movers(self, limit: int = 6) -> list[Mover]:
        """Top gainers and losers from the Massive (Polygon.io) snapshot API."""
        if not self._config.massive_api_key:
            return []
        try:
            # The Massive RESTClient is synchronous; keep it off the event loop
            snapshots = await asyncio.to_thread(self._fetch_direction_snapshots, limit)
        except Exception as e:
            raise UpstreamTransportError(f"Massive snapshot failed: {e}") from e

        movers: list[Mover] = []
        for snap in snapshots:
            try:
                movers.append(
                    Mover(
                        name=snap.ticker,
                        symbol=snap.ticker,
                        raw_change=float(snap.todays_change_percent),
                        kind="Stock",
                    )
                )
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping snapshot for %s: %s", getattr(snap, "ticker", "???"), e)
        return movers

    def _fetch_direction_snapshots(self, limit: int) -> list:
        """Synchronous call to the Massive REST API. Runs in a thread."""
        from massive import RESTClient
        from massive.rest.models import SnapshotMarketType

        if self._massive is None:
            self._massive = RESTClient(api_key=self._config.massive_api_key)
        snapshots: list = []
        for direction in ("gainers", "losers"):
            found = self._massive.get_snapshot_direction(
                market_type=SnapshotMarketType.STOCKS,
                direction=direction,
            )
            snapshots.extend(list(found or [])[:limit])
        return snapshots

    # --- Internal ---

    async def _get_json(self, url: str, params: dict[str, Any] | None = None, symbol: str | None = None) -> Any:
        try:
            response = await self._http.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamTransportError(f"HTTP {e.response.status_code} from {url}", symbol) from e
        except httpx.HTTPError as e:
            raise UpstreamTransportError(f"{type(e).__name__} calling {url}", symbol) from e
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamDataError(f"Non-JSON response from {url}", symbol) from e


def quote_to_tick(inst: Instrument, quote: Quote) -> Tick:
    """Quote normalized into a Tick (percent from previous close first)."""
    change = quote.change
    if is_usable(quote.previous_close):
        change = quote.price - quote.previous_close
    return Tick(
        symbol=inst.symbol,
        category=inst.category,
        price=quote.price,
        change_percent=compute_change_percent(quote.price, quote.previous_close, quote.change_percent),
        change=change,
        observed_at=quote.observed_at,
        name=inst.name,
        source="rest",
    )


def quote_reference(quote: Quote, as_of: float) -> ReferenceClose | None:
    """Reference values carried by a quote, or None if it has neither."""
    if not is_usable(quote.previous_close) and not is_usable(quote.change_percent):
        return None
    return ReferenceClose(
        symbol=quote.symbol,
        previous_close=quote.previous_close if is_usable(quote.previous_close) else float("nan"),
        as_of=as_of,
        rest_change_percent=quote.change_percent,
    )
