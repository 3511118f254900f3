"""Tests for GBMSimulator and SimulatorDataSource."""

import asyncio

import pytest

from marketwire.models import Category, Instrument
from marketwire.seed_prices import EQUITY_INDEX_CORR, INTRA_CATEGORY_CORR, SEED_PRICES
from marketwire.simulator import GBMSimulator, SimulatorDataSource
from marketwire.store import ReferenceBook
from marketwire.symbols import instrument, streamed_instruments


def _instruments(*symbols):
    return [instrument(s) for s in symbols]


class TestGBMSimulator:
    """Unit tests for the GBM price simulator."""

    def test_step_returns_all_symbols(self):
        """Test that step() returns prices for all instruments."""
        sim = GBMSimulator(_instruments("AAPL.US", "EURUSD"))
        assert set(sim.step()) == {"AAPL.US", "EURUSD"}

    def test_prices_are_positive(self):
        """GBM prices can never go negative (exp() is always positive)."""
        sim = GBMSimulator(_instruments("ADA-USD"))
        for _ in range(5_000):
            assert sim.step()["ADA-USD"] > 0

    def test_initial_prices_match_seeds(self):
        sim = GBMSimulator(_instruments("XAUUSD"))
        assert sim.get_price("XAUUSD") == SEED_PRICES["XAUUSD"]

    def test_unknown_symbol_gets_random_seed_price(self):
        sim = GBMSimulator([Instrument("ZZZZ", "Zed", Category.EQUITY)])
        assert 50.0 <= sim.get_price("ZZZZ") <= 300.0

    def test_duplicates_ignored(self):
        sim = GBMSimulator(_instruments("AAPL.US", "AAPL.US"))
        assert sim.symbols == ["AAPL.US"]

    def test_empty_step(self):
        assert GBMSimulator([]).step() == {}

    def test_cholesky_none_with_one_instrument(self):
        assert GBMSimulator(_instruments("AAPL.US"))._cholesky is None

    def test_full_registry_is_factorizable(self):
        """Test the category correlation matrix for every streamed instrument is positive definite."""
        sim = GBMSimulator(streamed_instruments())
        assert sim._cholesky is not None
        assert len(sim.step()) == len(streamed_instruments())

    def test_pairwise_correlation(self):
        assert GBMSimulator._pairwise_correlation(Category.CRYPTO, Category.CRYPTO) == INTRA_CATEGORY_CORR[Category.CRYPTO]
        assert GBMSimulator._pairwise_correlation(Category.EQUITY, Category.INDEX) == EQUITY_INDEX_CORR
        assert GBMSimulator._pairwise_correlation(Category.INDEX, Category.EQUITY) == EQUITY_INDEX_CORR
        assert GBMSimulator._pairwise_correlation(Category.FOREX, Category.CRYPTO) < 0.1

    def test_price_rounding(self):
        """Test large prices round to cents and small ones keep five decimals."""
        sim = GBMSimulator(_instruments("AAPL.US", "XRP-USD"))
        result = sim.step()
        assert result["AAPL.US"] == round(result["AAPL.US"], 2)
        assert result["XRP-USD"] == round(result["XRP-USD"], 5)

    def test_default_dt_is_reasonable(self):
        assert 0 < GBMSimulator.DEFAULT_DT < 0.0001


@pytest.mark.asyncio
class TestSimulatorDataSource:
    """Integration tests for the SimulatorDataSource."""

    async def test_start_emits_seed_ticks(self):
        """Test that start() immediately emits one tick per instrument."""
        received = []
        book = ReferenceBook()
        source = SimulatorDataSource(_instruments("AAPL.US", "EURUSD"), received.append, book, update_interval=10)
        await source.start()

        assert {t.symbol for t in received} == {"AAPL.US", "EURUSD"}
        assert all(t.change_percent == 0.0 and t.source == "simulator" for t in received)
        assert book.previous_close("AAPL.US") == SEED_PRICES["AAPL.US"]
        assert source.get_symbols() == ["AAPL.US", "EURUSD"]

        await source.stop()

    async def test_ticks_over_time(self, wait_for):
        """Test that ticks keep flowing with change measured from the seed."""
        received = []
        source = SimulatorDataSource(_instruments("BTC-USD"), received.append, ReferenceBook(), update_interval=0.02)
        await source.start()
        await wait_for(lambda: len(received) >= 4)
        await source.stop()

        tick = received[-1]
        assert tick.category is Category.CRYPTO
        assert tick.name == "BTC"
        expected = (tick.price - SEED_PRICES["BTC-USD"]) / SEED_PRICES["BTC-USD"] * 100
        assert tick.change_percent == pytest.approx(expected)

    async def test_stop_is_clean(self):
        """Test that stop() is clean and idempotent."""
        received = []
        source = SimulatorDataSource(_instruments("AAPL.US"), received.append, ReferenceBook(), update_interval=0.01)
        await source.start()
        await source.stop()
        count = len(received)
        await asyncio.sleep(0.05)
        # Double stop should not raise, and no ticks arrive after stop
        await source.stop()
        assert len(received) == count
