"""MarketDataService: owns every store, cache, hub and upstream source."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from .analytics import correlation_matrix, currency_strength, rank_movers
from .config import MarketConfig
from .errors import UpstreamDataError, UpstreamError
from .hub import BroadcastHub
from .interface import MarketDataSource
from .models import CacheEntry, Category, Instrument, Mover, Tick
from .reference import ReferenceCloseRefresher
from .response_cache import ResponseCache
from .rest_client import RestFallbackClient, quote_reference, quote_to_tick
from .series import fetch_daily_change, fetch_heatmap_row, percent_change
from .store import ReferenceBook, TickStore
from .symbols import (
    COMMODITIES,
    CORRELATION_ASSETS,
    CRYPTO,
    CRYPTO_MOVER_COINS,
    FOREX,
    INDICES,
    instrument,
    instruments_for,
)

logger = logging.getLogger(__name__)

DEFAULT_CORRELATION_DAYS = 30


class MarketDataService:
    """Single owner of the market data layer's state.

    Sources push ticks through ``ingest``; pull-side callers use
    ``get_tick`` / ``get_quote`` / ``get_cached_or_fresh`` and the derived
    computations. ``stop()`` tears down every task and connection.

    Lifecycle:
        service = create_market_data_service()
        await service.start()
        # ... app runs ...
        await service.stop()
    """

    def __init__(
        self,
        config: MarketConfig | None = None,
        rest_client: RestFallbackClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or MarketConfig()
        self._clock = clock
        self.stores: dict[Category, TickStore] = {
            c: TickStore(c, self.config.freshness_window, clock) for c in Category
        }
        self.references = ReferenceBook()
        self.cache = ResponseCache(self.config.ttls, clock, self.config.stale_retry_backoff)
        self.hub = BroadcastHub(self.snapshot_ticks)
        self.rest = rest_client or RestFallbackClient(self.config)
        self._sources: list[MarketDataSource] = []
        self._refresher: ReferenceCloseRefresher | None = None
        self._running = False
        self._closed = False

    # --- Lifecycle ---

    def add_source(self, source: MarketDataSource) -> None:
        self._sources.append(source)

    def set_reference_refresher(self, refresher: ReferenceCloseRefresher) -> None:
        self._refresher = refresher

    @property
    def sources(self) -> list[MarketDataSource]:
        return list(self._sources)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        if self._refresher is not None:
            await self._refresher.start()
        for source in self._sources:
            await source.start()
        logger.info("Market data service started with %d sources", len(self._sources))

    async def stop(self) -> None:
        """Stop timers and sources and close the HTTP client. Safe to repeat."""
        if self._closed:
            return
        self._closed = True
        self._running = False
        for source in self._sources:
            await source.stop()
        if self._refresher is not None:
            await self._refresher.stop()
        await self.rest.aclose()
        logger.info("Market data service stopped")

    # --- Ingestion (push side) ---

    def ingest(self, tick: Tick) -> None:
        """Fan a tick out and store it in one synchronous step."""
        self.hub.publish(tick)
        self.stores[tick.category].put(tick)

    def snapshot_ticks(self) -> list[Tick]:
        """Every currently known tick across all categories."""
        ticks: list[Tick] = []
        for store in self.stores.values():
            ticks.extend(store.snapshot().values())
        return ticks

    # --- Point reads ---

    def get_tick(self, symbol: str) -> Tick | None:
        """Fresh tick for ``symbol`` from the store, or None."""
        inst = instrument(symbol)
        if inst is None:
            return None
        return self.stores[inst.category].get_fresh(symbol)

    async def get_quote(self, symbol: str) -> Tick | None:
        """Best available value: fresh store tick, else one REST fetch.

        Returns None when neither produces anything usable.
        """
        inst = instrument(symbol)
        if inst is None:
            logger.warning("Unknown symbol requested: %s", symbol)
            return None
        fresh = self.get_tick(symbol)
        if fresh is not None:
            return fresh
        try:
            tick = await self._fetch_fallback(inst)
        except UpstreamError as e:
            logger.warning("Fallback quote for %s failed: %s", symbol, e)
            return None
        store = self.stores[inst.category]
        if not store.put_if_newer(tick):
            logger.debug("Kept newer stored tick for %s over REST result", symbol)
        return store.get(symbol)

    async def get_quotes(self, category: Category | str) -> list[Tick]:
        """Best available value for every instrument in ``category``.

        Symbols that fail upstream are skipped; the result is whatever
        subset succeeded.
        """
        results: list[Tick] = []
        for inst in instruments_for(category):
            fresh = self.get_tick(inst.symbol)
            if fresh is not None:
                results.append(fresh)
                continue
            tick = await self.get_quote(inst.symbol)
            if tick is not None:
                results.append(tick)
            await asyncio.sleep(self.config.request_pause)
        return results

    async def get_series(self, symbol: str, days: int) -> list[float]:
        """Daily closes for a registry symbol, correlation asset name or chart symbol."""
        inst = instrument(symbol)
        if inst is not None and inst.chart_symbol:
            chart_symbol = inst.chart_symbol
        else:
            chart_symbol = CORRELATION_ASSETS.get(symbol, symbol)
        return await self.rest.fetch_daily_series(chart_symbol, days)

    # --- Cached views (pull side) ---

    async def get_cached_or_fresh(self, category: str) -> CacheEntry:
        """Cached payload for a named view, refreshed at most once per TTL.

        Known views: ``quotes:<category>``, ``movers``, ``heatmap:forex``,
        ``heatmap:crypto``, ``currency-strength``, ``correlation[:<days>]``.
        """
        return await self.cache.get_or_refresh(category, self._refresher_for(category))

    async def compute_correlation_matrix(
        self,
        asset_set: dict[str, str] | None = None,
        period_days: int = DEFAULT_CORRELATION_DAYS,
    ) -> dict:
        key = f"correlation:{period_days}"
        if asset_set is not None and asset_set != CORRELATION_ASSETS:
            key += ":" + ",".join(sorted(asset_set))
        entry = await self.cache.get_or_refresh(
            key, lambda: self._correlation_payload(asset_set or CORRELATION_ASSETS, period_days)
        )
        return entry.as_response()

    async def top_movers(self) -> list[dict] | dict:
        return (await self.get_cached_or_fresh("movers")).as_response()

    async def currency_strength(self) -> dict:
        return (await self.get_cached_or_fresh("currency-strength")).as_response()

    async def heatmap(self, kind: str = "forex") -> dict:
        return (await self.get_cached_or_fresh(f"heatmap:{kind}")).as_response()

    # --- Refresh functions ---

    def _refresher_for(self, key: str) -> Callable[[], Awaitable[Any]]:
        name, _, arg = key.partition(":")
        if name == "quotes" and arg in {c.value for c in Category}:
            return lambda: self._quotes_payload(Category(arg))
        if name == "movers" and not arg:
            return self._movers_payload
        if name == "heatmap" and arg == "forex":
            return lambda: self._heatmap_payload(FOREX + COMMODITIES)
        if name == "heatmap" and arg == "crypto":
            return lambda: self._heatmap_payload(CRYPTO)
        if name == "currency-strength" and not arg:
            return self._strength_payload
        if name == "correlation":
            days = int(arg) if arg else DEFAULT_CORRELATION_DAYS
            return lambda: self._correlation_payload(CORRELATION_ASSETS, days)
        raise KeyError(f"Unknown cache category: {key}")

    async def _quotes_payload(self, category: Category) -> list[dict]:
        ticks = await self.get_quotes(category)
        if not ticks:
            raise UpstreamDataError(f"No {category.value} quotes available")
        ticks.sort(key=lambda t: abs(t.change_percent), reverse=True)
        return [t.to_message() for t in ticks]

    async def _strength_payload(self) -> dict:
        ticks = await self.get_quotes(Category.FOREX)
        if not ticks:
            raise UpstreamDataError("No forex quotes for currency strength")
        changes = [(t.name or t.symbol, t.change_percent) for t in ticks]
        return currency_strength(changes, threshold=self.config.strength_threshold)

    async def _heatmap_payload(self, instruments: tuple[Instrument, ...]) -> dict:
        rows: dict[str, dict[str, float | None]] = {}
        for inst in instruments:
            if not inst.chart_symbol:
                continue
            rows[inst.name] = await fetch_heatmap_row(self.rest, inst.chart_symbol, self.config.request_pause)
            logger.debug("Heatmap row for %s: %s", inst.name, rows[inst.name])
        if not any(v is not None for row in rows.values() for v in row.values()):
            raise UpstreamDataError("Heatmap produced no data")
        return rows

    async def _correlation_payload(self, assets: dict[str, str], period_days: int) -> dict:
        series: dict[str, list[float]] = {}
        for name, chart_symbol in assets.items():
            try:
                closes = await self.rest.fetch_daily_series(chart_symbol, period_days)
            except UpstreamError as e:
                logger.warning("Correlation series for %s failed: %s", name, e)
                closes = []
            if len(closes) < self.config.correlation_min_points:
                logger.warning("Insufficient data for %s: %d points", name, len(closes))
            else:
                series[name] = closes
            await asyncio.sleep(self.config.request_pause)

        if not series:
            raise UpstreamDataError(f"No usable series for {period_days}-day correlation")
        result = correlation_matrix(series, self.config.correlation_min_points)
        logger.info("Correlation matrix calculated for %d assets (%d days)", len(result["assets"]), period_days)
        return {
            "period": period_days,
            "assets": result["assets"],
            "matrix": result["matrix"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def _movers_payload(self) -> list[dict]:
        results = await asyncio.gather(
            self.rest.fetch_stock_movers(self.config.stock_movers_limit),
            self._crypto_movers(),
            self._forex_movers(),
            self._chart_movers(COMMODITIES, "Commodity"),
            self._chart_movers(INDICES, "Index"),
            return_exceptions=True,
        )
        candidates: list[Mover] = []
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("Movers source failed: %s", result)
                continue
            candidates.extend(result)
        if not candidates:
            raise UpstreamDataError("No mover candidates from any source")
        return [m.to_dict() for m in rank_movers(candidates, self.config.movers_limit)]

    async def _crypto_movers(self) -> list[Mover]:
        movers: list[Mover] = []
        for coin in CRYPTO_MOVER_COINS:
            symbol = f"{coin}-USD"
            pct = await fetch_daily_change(self.rest, symbol)
            if pct is not None:
                movers.append(Mover(coin, symbol, pct, "Crypto"))
            await asyncio.sleep(self.config.request_pause)
        return movers

    async def _forex_movers(self) -> list[Mover]:
        pairs = [inst.name for inst in FOREX]
        changes = await self.rest.fetch_forex_percent_changes(pairs)
        return [Mover(pair, pair, pct, "Forex") for pair, pct in changes.items()]

    async def _chart_movers(self, instruments: tuple[Instrument, ...], kind: str) -> list[Mover]:
        movers: list[Mover] = []
        for inst in instruments:
            if not inst.chart_symbol:
                continue
            pct = await fetch_daily_change(self.rest, inst.chart_symbol)
            if pct is not None:
                # Commodities rank under their display name, indices under the chart symbol
                symbol = inst.name if kind == "Commodity" else inst.chart_symbol
                movers.append(Mover(inst.name, symbol, pct, kind))
            await asyncio.sleep(self.config.request_pause)
        return movers

    # --- Internal ---

    async def _fetch_fallback(self, inst: Instrument) -> Tick:
        """REST quote when the instrument has one, else the last daily close."""
        if inst.rest_symbol:
            quote = await self.rest.fetch_quote(inst)
            ref = quote_reference(quote, self._clock())
            if ref is not None:
                # Later stream frames compute their percent against this close
                self.references.set(ref)
            return quote_to_tick(inst, quote)
        if not inst.chart_symbol:
            raise UpstreamDataError(f"No fallback endpoint for {inst.symbol}", inst.symbol)

        closes = await self.rest.fetch_series(inst.chart_symbol, "1d", "5d")
        pct = percent_change(closes)
        if pct is None:
            raise UpstreamDataError(f"Insufficient series for {inst.symbol}", inst.symbol)
        return Tick(
            symbol=inst.symbol,
            category=inst.category,
            price=closes[-1],
            change_percent=pct,
            change=closes[-1] - closes[-2],
            observed_at=self._clock(),
            name=inst.name,
            source="rest",
        )
