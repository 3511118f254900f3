"""Tests for MarketDataService with a mocked REST client."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from marketwire.errors import CacheMissWithNoFallback, UpstreamDataError, UpstreamTransportError
from marketwire.interface import MarketDataSource
from marketwire.models import Category, ReferenceClose, Tick
from marketwire.reference import ReferenceCloseRefresher
from marketwire.rest_client import Quote, RestFallbackClient
from marketwire.service import MarketDataService
from marketwire.symbols import COMMODITIES, FOREX, INDICES, instrument


@pytest.fixture
def rest():
    client = MagicMock(spec=RestFallbackClient)
    client.fetch_quote = AsyncMock()
    client.fetch_series = AsyncMock(return_value=[100.0, 101.0])
    client.fetch_daily_series = AsyncMock(return_value=[1.0, 2.0, 3.0, 4.0, 5.0])
    client.fetch_forex_percent_changes = AsyncMock(return_value={})
    client.fetch_stock_movers = AsyncMock(return_value=[])
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def service(config, rest, clock):
    return MarketDataService(config, rest_client=rest, clock=clock)


def _tick(symbol, clock, price=1.0, change_percent=0.0, **kwargs):
    inst = instrument(symbol)
    return Tick(
        symbol=symbol,
        category=inst.category,
        price=price,
        change_percent=change_percent,
        observed_at=kwargs.pop("observed_at", clock()),
        name=inst.name,
        **kwargs,
    )


def _quote(symbol, clock, price=1.0, previous_close=None, change_percent=0.0, observed_at=None):
    return Quote(
        symbol=symbol,
        price=price,
        previous_close=previous_close,
        change=None,
        change_percent=change_percent,
        observed_at=clock() if observed_at is None else observed_at,
    )


@pytest.mark.asyncio
class TestPointReads:
    """Store-first reads with REST fallback."""

    async def test_ingest_then_get_tick(self, service, clock):
        """Test an ingested tick is readable while fresh."""
        tick = _tick("EURUSD", clock, price=1.0951)
        service.ingest(tick)

        assert service.get_tick("EURUSD") is tick
        clock.advance(60)
        assert service.get_tick("EURUSD") is None

    async def test_get_tick_unknown_symbol(self, service):
        assert service.get_tick("NOPE") is None

    async def test_get_quote_prefers_fresh_store(self, service, rest, clock):
        tick = _tick("AAPL.US", clock, price=190.0)
        service.ingest(tick)

        assert await service.get_quote("AAPL.US") is tick
        rest.fetch_quote.assert_not_awaited()

    async def test_get_quote_falls_back_to_rest(self, service, rest, clock):
        """Test a missing tick is fetched once and written to the store."""
        rest.fetch_quote.return_value = _quote("EURUSD", clock, price=1.09, previous_close=1.08)

        tick = await service.get_quote("EURUSD")

        assert tick.price == 1.09
        assert tick.change_percent == pytest.approx(0.9259, rel=1e-3)
        assert tick.source == "rest"
        assert service.stores[Category.FOREX].get("EURUSD") == tick
        rest.fetch_quote.assert_awaited_once_with(instrument("EURUSD"))

    async def test_rest_fallback_updates_reference_close(self, service, rest, clock):
        """Test the previous close from a REST quote replaces the held reference."""
        service.references.set(ReferenceClose("EURUSD", 1.05, as_of=clock() - 600))
        rest.fetch_quote.return_value = _quote("EURUSD", clock, price=1.09, previous_close=1.08, change_percent=0.93)

        await service.get_quote("EURUSD")

        ref = service.references.get("EURUSD")
        assert ref.previous_close == 1.08
        assert ref.rest_change_percent == 0.93
        assert ref.as_of == clock()

    async def test_rest_fallback_without_reference_values(self, service, rest, clock):
        """Test a quote with neither close nor percent leaves the reference alone."""
        held = ReferenceClose("EURUSD", 1.05, as_of=clock() - 600)
        service.references.set(held)
        rest.fetch_quote.return_value = _quote("EURUSD", clock, price=1.09, change_percent=None)

        await service.get_quote("EURUSD")

        assert service.references.get("EURUSD") is held

    async def test_rest_result_does_not_overwrite_newer_tick(self, service, rest, clock):
        """Test a REST quote older than the held stream tick is discarded."""
        streamed = _tick("EURUSD", clock, price=1.0951, observed_at=clock() - 100)
        service.ingest(streamed)
        rest.fetch_quote.return_value = _quote("EURUSD", clock, price=1.08, observed_at=clock() - 200)

        assert await service.get_quote("EURUSD") is streamed

    async def test_get_quote_upstream_failure(self, service, rest):
        rest.fetch_quote.side_effect = UpstreamTransportError("timeout", "EURUSD")
        assert await service.get_quote("EURUSD") is None

    async def test_get_quote_unknown_symbol(self, service, rest):
        assert await service.get_quote("NOPE") is None
        rest.fetch_quote.assert_not_awaited()

    async def test_chart_only_fallback(self, service, rest):
        """Test instruments without a quote endpoint fall back to the daily series."""
        rest.fetch_series.return_value = [78.0, 80.0, 82.0]

        tick = await service.get_quote("CL=F")

        rest.fetch_series.assert_awaited_once_with("CL=F", "1d", "5d")
        assert tick.price == 82.0
        assert tick.change_percent == pytest.approx(2.5)
        assert tick.change == 2.0
        assert tick.category is Category.COMMODITY
        assert tick.source == "rest"

    async def test_get_quotes_partial(self, service, rest, clock):
        """Test failing symbols are skipped and the rest returned."""

        async def fetch_quote(inst):
            if inst.symbol == "GBPUSD":
                raise UpstreamTransportError("timeout", inst.symbol)
            return _quote(inst.symbol, clock)

        rest.fetch_quote.side_effect = fetch_quote
        ticks = await service.get_quotes(Category.FOREX)

        assert len(ticks) == len(FOREX) - 1
        assert "GBPUSD" not in {t.symbol for t in ticks}

    async def test_get_series_resolves_symbols(self, service, rest):
        await service.get_series("EURUSD", 30)
        await service.get_series("Gold", 30)
        await service.get_series("DX-Y.NYB", 7)

        calls = [c.args for c in rest.fetch_daily_series.await_args_list]
        assert calls == [("EURUSD=X", 30), ("GC=F", 30), ("DX-Y.NYB", 7)]


@pytest.mark.asyncio
class TestCachedViews:
    """Cached views refreshed through the response cache."""

    async def test_quotes_view_sorted_and_cached(self, service, rest, clock):
        """Test the quotes view is ordered by absolute change and served from cache."""
        moves = {"EURUSD": 0.1, "GBPUSD": -0.9, "USDJPY": 0.4}

        async def fetch_quote(inst):
            return _quote(inst.symbol, clock, change_percent=moves.get(inst.symbol, 0.0))

        rest.fetch_quote.side_effect = fetch_quote

        entry = await service.get_cached_or_fresh("quotes:forex")
        symbols = [m["symbol"] for m in entry.payload[:3]]
        assert symbols == ["GBPUSD", "USDJPY", "EURUSD"]

        calls = rest.fetch_quote.await_count
        await service.get_cached_or_fresh("quotes:forex")
        assert rest.fetch_quote.await_count == calls

    async def test_unknown_view(self, service):
        with pytest.raises(KeyError):
            await service.get_cached_or_fresh("calendar")

    async def test_movers_survive_failing_source(self, service, rest):
        """Test one failing movers source leaves the others' results."""
        rest.fetch_stock_movers.side_effect = UpstreamTransportError("Massive snapshot failed")
        rest.fetch_forex_percent_changes.return_value = {"EUR/USD": -3.0}

        async def series(chart_symbol, interval="1d", range_="5d"):
            return [100.0, 110.0] if chart_symbol == "BTC-USD" else [100.0, 101.0]

        rest.fetch_series.side_effect = series

        movers = await service.top_movers()

        assert len(movers) == service.config.movers_limit
        assert movers[0]["symbol"] == "BTC-USD"
        assert movers[0]["performance"] == "+10.00%"
        assert movers[1] == {
            "name": "EUR/USD",
            "symbol": "EUR/USD",
            "performance": "-3.00%",
            "rawChange": -3.0,
            "type": "Forex",
            "trend": "negative",
        }
        assert "Stock" not in {m["type"] for m in movers}

    async def test_movers_symbols_by_kind(self, service, rest):
        """Test commodities rank under their name and indices under their chart symbol."""
        service.config = service.config.with_overrides(movers_limit=50)
        movers = await service.top_movers()

        symbols = {m["symbol"] for m in movers}
        assert {c.name for c in COMMODITIES} <= symbols
        assert {i.chart_symbol for i in INDICES} <= symbols

    async def test_movers_no_sources(self, service, rest):
        """Test movers with every source empty and nothing cached is an error."""
        rest.fetch_series.side_effect = UpstreamTransportError("down")

        with pytest.raises(CacheMissWithNoFallback) as exc_info:
            await service.top_movers()
        assert isinstance(exc_info.value.__cause__, UpstreamDataError)

    async def test_currency_strength(self, service, clock):
        """Test strength is derived from fresh forex ticks."""
        moves = {"EURUSD": 1.0, "USDJPY": 1.2}
        for inst in FOREX:
            service.ingest(_tick(inst.symbol, clock, change_percent=moves.get(inst.symbol, 0.0)))

        strength = await service.currency_strength()

        assert strength["EUR"] == "Strong"
        assert strength["JPY"] == "Weak"
        assert strength["ZAR"] == "Neutral"

    async def test_heatmap(self, service, rest):
        rest.fetch_series.return_value = [100.0] * 20 + [102.0]

        rows = await service.heatmap("forex")

        assert set(rows) == {i.name for i in FOREX + COMMODITIES}
        assert rows["Gold"]["1d"] == pytest.approx(2.0)
        assert set(rows["EUR/USD"]) == {"1h", "4h", "1d", "1w"}

    async def test_heatmap_stale_after_failure(self, service, rest, clock):
        """Test an expired heatmap is served stale when upstream fails."""
        await service.heatmap("crypto")
        clock.advance(service.config.ttls.heatmap)
        rest.fetch_series.side_effect = UpstreamTransportError("down")

        rows = await service.heatmap("crypto")
        assert rows["stale"] is True
        assert "BTC" in rows


@pytest.mark.asyncio
class TestCorrelation:
    """Correlation matrix over daily closes."""

    async def test_default_assets(self, service, rest):
        result = await service.compute_correlation_matrix()

        assert result["period"] == 30
        assert len(result["assets"]) == 9
        assert result["matrix"]["Gold"]["Gold"] == 1.0
        assert "correlation:30" in service.cache.keys()

    async def test_custom_asset_set_key(self, service, rest):
        """Test a custom asset set is cached under its own key."""
        await service.compute_correlation_matrix({"Silver": "SI=F", "Gold": "GC=F"}, period_days=90)

        assert "correlation:90:Gold,Silver" in service.cache.keys()
        calls = [c.args for c in rest.fetch_daily_series.await_args_list]
        assert calls == [("SI=F", 90), ("GC=F", 90)]

    async def test_insufficient_data_excluded(self, service, rest):
        """Test assets with too few closes are left out of the matrix."""

        async def series(chart_symbol, days):
            if chart_symbol == "BTC-USD":
                return [1.0, 2.0]
            if chart_symbol == "^GSPC":
                raise UpstreamTransportError("timeout", chart_symbol)
            return [1.0, 2.0, 3.0, 5.0, 8.0]

        rest.fetch_daily_series.side_effect = series
        result = await service.compute_correlation_matrix()

        assert "Bitcoin" not in result["assets"]
        assert "S&P 500" not in result["assets"]
        assert len(result["assets"]) == 7

    async def test_view_key(self, service):
        entry = await service.get_cached_or_fresh("correlation:7")
        assert entry.payload["period"] == 7


@pytest.mark.asyncio
class TestLifecycle:
    """Start/stop wiring and hub integration."""

    async def test_start_stop(self, service, rest):
        """Test sources and refresher are started and stopped once."""
        source = MagicMock(spec=MarketDataSource)
        source.start = AsyncMock()
        source.stop = AsyncMock()
        refresher = MagicMock(spec=ReferenceCloseRefresher)
        refresher.start = AsyncMock()
        refresher.stop = AsyncMock()
        service.add_source(source)
        service.set_reference_refresher(refresher)

        await service.start()
        await service.start()
        await service.stop()
        await service.stop()

        source.start.assert_awaited_once()
        source.stop.assert_awaited_once()
        refresher.start.assert_awaited_once()
        refresher.stop.assert_awaited_once()
        rest.aclose.assert_awaited_once()

    async def test_ingest_publishes(self, service, clock):
        """Test ingested ticks reach subscribers, after the connect snapshot."""
        service.ingest(_tick("EURUSD", clock, price=1.09))

        async with service.hub.subscribe() as sub:
            service.ingest(_tick("EURUSD", clock, price=1.10))
            snapshot = json.loads(await sub.get())
            live = json.loads(await sub.get())

        assert snapshot["price"] == 1.09
        assert live["price"] == 1.10
        assert live["type"] == "forex"
