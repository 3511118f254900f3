"""Percent change over a comparison offset of a fetched close series.

One utility serves indices, crypto, commodities and the heatmaps: fetch
closes at some interval/range, then compare the last close to the close
``offset`` positions back.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .errors import UpstreamError
from .rest_client import RestFallbackClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Timeframe:
    interval: str
    range_: str
    offset: int  # Negative index of the comparison close
    fallback: Timeframe | None = None


HEATMAP_TIMEFRAMES: dict[str, Timeframe] = {
    # 12 x 5m bars back is one hour; if 5m has no data use 4 x 15m instead
    "1h": Timeframe("5m", "1d", -13, fallback=Timeframe("15m", "5d", -5)),
    "4h": Timeframe("15m", "5d", -17),
    "1d": Timeframe("1d", "5d", -2),
    "1w": Timeframe("1d", "1mo", -8),
}

DAILY = Timeframe("1d", "5d", -2)


def percent_change(closes: list[float], offset: int = -2) -> float | None:
    """Change from ``closes[offset]`` to ``closes[-1]`` in percent.

    When the series is too short for ``offset`` the previous close (-2) is
    used instead. Returns None with fewer than two points or a zero base.
    """
    if len(closes) < 2:
        return None
    if abs(offset) > len(closes):
        offset = -2
    previous = closes[offset]
    if previous == 0:
        return None
    return (closes[-1] - previous) / previous * 100


async def fetch_change(
    client: RestFallbackClient,
    chart_symbol: str,
    timeframe: Timeframe = DAILY,
) -> float | None:
    """Fetch a series and compute its change at the timeframe's offset.

    Upstream failures become None for this symbol only. The fallback
    timeframe, if any, is tried when the primary yields nothing; it must
    have enough points for its offset rather than degrading to -2.
    """
    try:
        closes = await client.fetch_series(chart_symbol, timeframe.interval, timeframe.range_)
        pct = percent_change(closes, timeframe.offset)
    except UpstreamError as e:
        logger.warning("Series %s (%s/%s) failed: %s", chart_symbol, timeframe.interval, timeframe.range_, e)
        pct = None

    if pct is None and timeframe.fallback is not None:
        fb = timeframe.fallback
        try:
            closes = await client.fetch_series(chart_symbol, fb.interval, fb.range_)
        except UpstreamError as e:
            logger.warning("Fallback series %s (%s/%s) failed: %s", chart_symbol, fb.interval, fb.range_, e)
            return None
        if len(closes) >= abs(fb.offset):
            pct = percent_change(closes, fb.offset)
    return pct


async def fetch_daily_change(client: RestFallbackClient, chart_symbol: str) -> float | None:
    return await fetch_change(client, chart_symbol, DAILY)


async def fetch_heatmap_row(
    client: RestFallbackClient,
    chart_symbol: str,
    pause: float = 0.1,
) -> dict[str, float | None]:
    """Percent change per heatmap timeframe, fetched sequentially."""
    row: dict[str, float | None] = {}
    for label, timeframe in HEATMAP_TIMEFRAMES.items():
        row[label] = await fetch_change(client, chart_symbol, timeframe)
        await asyncio.sleep(pause)
    return row
