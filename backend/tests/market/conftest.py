"""Shared fixtures for market data tests."""

import asyncio

import pytest

from marketwire.config import MarketConfig
from marketwire.models import Category, Tick


class FakeClock:
    """Manually advanced clock for freshness and TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    """Config with no inter-request pauses and a short reconnect delay."""
    return MarketConfig(request_pause=0.0, reconnect_delay=0.05)


@pytest.fixture
def make_tick():
    def _make(symbol="EURUSD", price=1.0951, category=Category.FOREX, change_percent=0.0, **kwargs):
        return Tick(symbol=symbol, category=category, price=price, change_percent=change_percent, **kwargs)

    return _make


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds, failing after ``timeout`` seconds."""

    async def _wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait
