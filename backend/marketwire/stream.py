"""Downstream push endpoints (WebSocket and SSE) fed by the broadcast hub."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from .errors import SubscriptionClosed
from .hub import BroadcastHub, Subscription
from .service import MarketDataService

logger = logging.getLogger(__name__)


def create_stream_router(service: MarketDataService) -> APIRouter:
    """Create the streaming router bound to ``service``'s hub.

    This factory pattern lets us inject the service without globals.
    """
    router = APIRouter(prefix="/api/stream", tags=["streaming"])

    @router.get("/prices")
    async def stream_prices(request: Request) -> StreamingResponse:
        """SSE endpoint for live tick updates.

        Each event carries one tick message:

            data: {"type": "forex", "symbol": "EURUSD", "price": 1.0951, ...}

        The first events after connecting are the current snapshot. Includes
        a retry directive so the browser auto-reconnects on disconnection
        (EventSource built-in behavior).
        """
        return StreamingResponse(
            _generate_events(service.hub, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    @router.websocket("/ws")
    async def stream_socket(websocket: WebSocket) -> None:
        """WebSocket endpoint: every hub message is sent as one text frame."""
        await websocket.accept()
        client = websocket.client.host if websocket.client else "unknown"
        logger.info("WebSocket client connected: %s", client)

        async with service.hub.subscribe() as sub:
            pump = asyncio.create_task(_pump(sub, websocket))
            drain = asyncio.create_task(_drain(websocket))
            done, pending = await asyncio.wait({pump, drain}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("WebSocket client %s closed with error: %s", client, exc)
            if pump in done and pump.exception() is None:
                # Hub closed the subscription; the client is too slow to keep
                logger.warning("Closing WebSocket client %s: dropped by hub", client)
                await websocket.close(code=1013)

        logger.info("WebSocket client disconnected: %s", client)

    return router


async def _pump(sub: Subscription, websocket: WebSocket) -> None:
    """Forward hub messages until the subscription is closed."""
    async for message in sub:
        await websocket.send_text(message)


async def _drain(websocket: WebSocket) -> None:
    """Consume inbound frames until the client goes away."""
    while True:
        await websocket.receive_text()


async def _generate_events(
    hub: BroadcastHub,
    request: Request,
    interval: float = 1.0,
) -> AsyncGenerator[str, None]:
    """Async generator that yields SSE-formatted tick events.

    Waits up to ``interval`` seconds for each message so client disconnects
    (detected via request.is_disconnected()) are noticed on quiet markets.
    """
    # Tell the client to retry after 1 second if the connection drops
    yield "retry: 1000\n\n"

    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s", client_ip)

    async with hub.subscribe() as sub:
        try:
            while True:
                if await request.is_disconnected():
                    logger.info("SSE client disconnected: %s", client_ip)
                    break
                try:
                    message = await asyncio.wait_for(sub.get(), timeout=interval)
                except asyncio.TimeoutError:
                    continue
                except SubscriptionClosed:
                    logger.warning("Ending SSE stream for %s: dropped by hub", client_ip)
                    break
                yield f"data: {message}\n\n"
        except asyncio.CancelledError:
            logger.info("SSE stream cancelled for: %s", client_ip)
