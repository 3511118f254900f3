"""GBM-based offline market simulator."""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time

import numpy as np

from .interface import MarketDataSource, TickSink
from .models import Category, Instrument, ReferenceClose, Tick, compute_change_percent
from .seed_prices import (
    CATEGORY_PARAMS,
    CROSS_CATEGORY_CORR,
    EQUITY_INDEX_CORR,
    INTRA_CATEGORY_CORR,
    SEED_PRICES,
)
from .store import ReferenceBook

logger = logging.getLogger(__name__)


class GBMSimulator:
    """Geometric Brownian Motion simulator for correlated instrument prices.

    Math:
        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Where:
        S(t)   = current price
        mu     = annualized drift (expected return)
        sigma  = annualized volatility
        dt     = time step as fraction of a trading year
        Z      = correlated standard normal random variable

    Correlation comes from category membership: same-category instruments
    move together, equities track indices, everything else is nearly
    independent.
    """

    TRADING_SECONDS_PER_YEAR = 252 * 6.5 * 3600  # 5,896,800
    DEFAULT_DT = 0.5 / TRADING_SECONDS_PER_YEAR  # ~8.48e-8

    def __init__(
        self,
        instruments: list[Instrument],
        dt: float = DEFAULT_DT,
        event_probability: float = 0.001,
    ) -> None:
        self._dt = dt
        self._event_prob = event_probability

        self._instruments: list[Instrument] = []
        self._prices: dict[str, float] = {}
        self._cholesky: np.ndarray | None = None

        for inst in instruments:
            if inst.symbol in self._prices:
                continue
            self._instruments.append(inst)
            self._prices[inst.symbol] = SEED_PRICES.get(inst.symbol, random.uniform(50.0, 300.0))
        self._rebuild_cholesky()

    @property
    def symbols(self) -> list[str]:
        return [i.symbol for i in self._instruments]

    def step(self) -> dict[str, float]:
        """Advance every instrument by one time step. Returns {symbol: new_price}."""
        n = len(self._instruments)
        if n == 0:
            return {}

        z = np.random.standard_normal(n)
        if self._cholesky is not None:
            z = self._cholesky @ z

        result: dict[str, float] = {}
        for i, inst in enumerate(self._instruments):
            params = CATEGORY_PARAMS[inst.category]
            mu = params["mu"]
            sigma = params["sigma"]

            drift = (mu - 0.5 * sigma**2) * self._dt
            diffusion = sigma * math.sqrt(self._dt) * z[i]
            self._prices[inst.symbol] *= math.exp(drift + diffusion)

            # Occasional 2-5% shock so movers views have something to rank
            if random.random() < self._event_prob:
                shock = random.uniform(0.02, 0.05) * random.choice([-1, 1])
                self._prices[inst.symbol] *= 1 + shock
                logger.debug("Random event on %s: %+.1f%%", inst.symbol, shock * 100)

            result[inst.symbol] = _round_price(self._prices[inst.symbol])

        return result

    def get_price(self, symbol: str) -> float | None:
        return self._prices.get(symbol)

    def _rebuild_cholesky(self) -> None:
        n = len(self._instruments)
        if n <= 1:
            self._cholesky = None
            return

        corr = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                rho = self._pairwise_correlation(self._instruments[i].category, self._instruments[j].category)
                corr[i, j] = rho
                corr[j, i] = rho

        try:
            self._cholesky = np.linalg.cholesky(corr)
        except np.linalg.LinAlgError:
            logger.warning("Correlation matrix not positive definite; using independent draws")
            self._cholesky = None

    @staticmethod
    def _pairwise_correlation(a: Category, b: Category) -> float:
        if a is b:
            return INTRA_CATEGORY_CORR[a]
        if {a, b} == {Category.EQUITY, Category.INDEX}:
            return EQUITY_INDEX_CORR
        return CROSS_CATEGORY_CORR


class SimulatorDataSource(MarketDataSource):
    """MarketDataSource backed by the GBM simulator.

    Seeds the ReferenceBook with the starting prices (so percent change is
    measured from the session "open"), then runs a background task that
    steps the simulation every ``update_interval`` seconds and hands each
    price to the sink as a Tick.
    """

    def __init__(
        self,
        instruments: list[Instrument],
        sink: TickSink,
        references: ReferenceBook,
        update_interval: float = 0.5,
        event_probability: float = 0.001,
    ) -> None:
        self._instruments = {i.symbol: i for i in instruments}
        self._sink = sink
        self._refs = references
        self._interval = update_interval
        self._event_prob = event_probability
        self._sim: GBMSimulator | None = None
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._sim = GBMSimulator(list(self._instruments.values()), event_probability=self._event_prob)
        now = time.time()
        for symbol in self._sim.symbols:
            price = self._sim.get_price(symbol)
            if price is None:
                continue
            self._refs.set(ReferenceClose(symbol=symbol, previous_close=price, as_of=now))
            self._emit(symbol, price, now)
        self._task = asyncio.create_task(self._run_loop(), name="simulator-loop")
        logger.info("Simulator started with %d instruments", len(self._instruments))

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Simulator stopped")

    def get_symbols(self) -> list[str]:
        return self._sim.symbols if self._sim else []

    def _emit(self, symbol: str, price: float, now: float) -> None:
        inst = self._instruments[symbol]
        prev = self._refs.previous_close(symbol)
        self._sink(
            Tick(
                symbol=symbol,
                category=inst.category,
                price=price,
                change_percent=compute_change_percent(price, prev),
                change=price - prev if prev is not None else None,
                observed_at=now,
                name=inst.name,
                source="simulator",
            )
        )

    async def _run_loop(self) -> None:
        """Core loop: step the simulation, emit ticks, sleep."""
        while True:
            try:
                if self._sim:
                    now = time.time()
                    for symbol, price in self._sim.step().items():
                        self._emit(symbol, price, now)
            except Exception:
                logger.exception("Simulator step failed")
            await asyncio.sleep(self._interval)


def _round_price(price: float) -> float:
    return round(price, 2) if price >= 10 else round(price, 5)
