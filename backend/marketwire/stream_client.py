"""Persistent upstream WebSocket feed with resubscribe-on-reconnect."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import WebSocketException

from .config import MarketConfig
from .errors import UpstreamTransportError
from .interface import MarketDataSource, TickSink
from .models import Category, Tick, compute_change_percent, is_usable, parse_float
from .store import ReferenceBook
from .symbols import FeedSpec, instrument, split_pair

logger = logging.getLogger(__name__)

Connector = Callable[[str], AbstractAsyncContextManager[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


def normalize_message(
    payload: dict[str, Any],
    feed: FeedSpec,
    references: ReferenceBook,
    rest_percent_quotes: frozenset[str] = frozenset({"ZAR"}),
    now: float | None = None,
) -> Tick | None:
    """Convert one provider message into a Tick, or None if it is not a tick.

    Messages without a symbol of this feed and a price (heartbeats, auth
    acks, status frames) are ignored. Price is the last trade ``p`` or,
    for quote feeds, the bid/ask mid (a lone side is used as-is).

    Percent change prefers the reference close. Forex pairs quoted in one of
    ``rest_percent_quotes`` take the percent from the last REST refresh
    instead, since a streamed cross mid against a stored close mixes
    currency bases.
    """
    symbol = payload.get("s")
    if not isinstance(symbol, str):
        return None
    category = feed.category_of(symbol)
    if category is None:
        return None

    price = parse_float(payload.get("p"))
    if price is None:
        bid = parse_float(payload.get("b"))
        ask = parse_float(payload.get("a"))
        if bid is not None and ask is not None:
            price = (bid + ask) / 2
        else:
            price = bid if bid is not None else ask
    if price is None:
        return None

    provider_percent = parse_float(payload.get("cp"))
    if provider_percent is None:
        provider_percent = parse_float(payload.get("dc"))
    provider_change = parse_float(payload.get("c"))
    if provider_change is None:
        provider_change = parse_float(payload.get("dd"))

    prev_close = references.previous_close(symbol)
    change = price - prev_close if is_usable(prev_close) else provider_change

    rest_percent = references.rest_change_percent(symbol)
    if (
        category is Category.FOREX
        and split_pair(symbol)[1] in rest_percent_quotes
        and is_usable(rest_percent)
    ):
        change_percent = float(rest_percent)
    else:
        change_percent = compute_change_percent(price, prev_close, provider_percent)

    inst = instrument(symbol)
    return Tick(
        symbol=symbol,
        category=category,
        price=price,
        change_percent=change_percent,
        change=change,
        observed_at=time.time() if now is None else now,
        name=inst.name if inst else None,
        source="stream",
    )


class UpstreamStream(MarketDataSource):
    """MarketDataSource backed by one provider streaming connection.

    Runs a background task cycling DISCONNECTED -> CONNECTING -> SUBSCRIBED
    -> DISCONNECTED. Each (re)connect sends a single subscribe request for
    the feed's full symbol list; any transport close or error schedules a
    reconnect after ``reconnect_delay`` seconds, indefinitely.

    Keepalive pings go out every ``ping_interval`` seconds. A missing pong is
    not treated as failure; only transport-level close/error reconnects.
    """

    def __init__(
        self,
        feed: FeedSpec,
        url: str,
        sink: TickSink,
        references: ReferenceBook,
        config: MarketConfig | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.feed = feed
        self._url = url
        self._sink = sink
        self._refs = references
        self._config = config or MarketConfig()
        self._connector = connector or self._default_connector
        self._task: asyncio.Task | None = None
        self._stopping = False

        self.state = ConnectionState.DISCONNECTED
        self.transitions: list[ConnectionState] = []
        self.reconnects: int = 0
        self.ticks_accepted: int = 0

    async def start(self) -> None:
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name=f"stream-{self.feed.name}")
        logger.info("Stream %s started: %d symbols", self.feed.name, len(self.feed.symbols))

    async def stop(self) -> None:
        self._stopping = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self.state is not ConnectionState.DISCONNECTED:
            self._transition(ConnectionState.DISCONNECTED)
        logger.info("Stream %s stopped", self.feed.name)

    def get_symbols(self) -> list[str]:
        return self.feed.symbols

    def subscribe_message(self) -> dict[str, str]:
        return {"action": "subscribe", "symbols": ",".join(self.feed.symbols)}

    def handle_raw(self, raw: str | bytes) -> Tick | None:
        """Parse one frame and hand an accepted tick to the sink."""
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("Stream %s: ignoring non-JSON frame", self.feed.name)
            return None
        if not isinstance(payload, dict):
            return None

        tick = normalize_message(
            payload,
            self.feed,
            self._refs,
            self._config.rest_percent_quote_currencies,
        )
        if tick is None:
            return None
        self._sink(tick)
        self.ticks_accepted += 1
        logger.debug("%s %s: %.5f (%+.2f%%)", self.feed.name, tick.symbol, tick.price, tick.change_percent)
        return tick

    # --- Internal ---

    def _default_connector(self, url: str) -> AbstractAsyncContextManager[Any]:
        return websockets.connect(
            url,
            ping_interval=self._config.ping_interval,
            ping_timeout=None,
            open_timeout=self._config.request_timeout,
        )

    def _transition(self, state: ConnectionState) -> None:
        logger.debug("Stream %s: %s -> %s", self.feed.name, self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    async def _run(self) -> None:
        """Connect, consume, and reconnect until stop()."""
        while not self._stopping:
            try:
                await self._session()
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                err = UpstreamTransportError(f"{type(e).__name__}: {e}")
                logger.warning("Stream %s transport error: %s", self.feed.name, err)
            except Exception:
                logger.exception("Stream %s failed unexpectedly", self.feed.name)

            self._transition(ConnectionState.DISCONNECTED)
            if self._stopping:
                break
            self.reconnects += 1
            logger.warning(
                "Stream %s disconnected, reconnecting in %.1fs",
                self.feed.name,
                self._config.reconnect_delay,
            )
            await asyncio.sleep(self._config.reconnect_delay)

    async def _session(self) -> None:
        self._transition(ConnectionState.CONNECTING)
        async with self._connector(self._url) as ws:
            await ws.send(json.dumps(self.subscribe_message()))
            self._transition(ConnectionState.SUBSCRIBED)
            logger.info("Stream %s subscribed to %d symbols", self.feed.name, len(self.feed.symbols))
            async for raw in ws:
                try:
                    self.handle_raw(raw)
                except Exception:
                    # One bad frame never costs the rest of the session
                    logger.exception("Stream %s: failed to handle frame", self.feed.name)
        logger.info("Stream %s closed by upstream", self.feed.name)
