"""Periodic refresh of previous-close reference values."""

from __future__ import annotations

import asyncio
import logging

from .errors import UpstreamError
from .models import Instrument
from .rest_client import RestFallbackClient
from .store import ReferenceBook

logger = logging.getLogger(__name__)


class ReferenceCloseRefresher:
    """Keeps the ReferenceBook primed for streamed percent-change maths.

    Runs on its own timer, independent of any stream connection. Symbols are
    fetched one at a time with ``pause`` seconds between requests to stay
    under upstream rate limits; one symbol failing never stops the rest.
    """

    def __init__(
        self,
        client: RestFallbackClient,
        book: ReferenceBook,
        instruments: list[Instrument],
        interval: float = 300.0,
        pause: float = 0.1,
    ) -> None:
        self._client = client
        self._book = book
        self._instruments = [i for i in instruments if i.rest_symbol]
        self._interval = interval
        self._pause = pause
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run_loop(), name="reference-refresher")
        logger.info(
            "Reference refresher started: %d symbols, %.0fs interval",
            len(self._instruments),
            self._interval,
        )

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Reference refresher stopped")

    async def refresh_once(self) -> int:
        """Refresh every symbol once. Returns how many succeeded."""
        refreshed = 0
        for inst in self._instruments:
            try:
                ref = await self._client.fetch_reference(inst)
            except UpstreamError as e:
                logger.warning("Previous close fetch failed for %s: %s", inst.symbol, e)
            else:
                self._book.set(ref)
                refreshed += 1
            await asyncio.sleep(self._pause)
        logger.debug("Reference refresh: %d/%d symbols", refreshed, len(self._instruments))
        return refreshed

    async def _run_loop(self) -> None:
        """Prime immediately, then refresh every interval."""
        while True:
            try:
                await self.refresh_once()
            except Exception:
                logger.exception("Reference refresh cycle failed")
            await asyncio.sleep(self._interval)
