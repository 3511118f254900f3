"""Factory for building a wired MarketDataService."""

from __future__ import annotations

import logging

from .config import MarketConfig
from .reference import ReferenceCloseRefresher
from .service import MarketDataService
from .symbols import FEEDS, streamed_instruments

logger = logging.getLogger(__name__)


def create_market_data_service(config: MarketConfig | None = None) -> MarketDataService:
    """Create the service with the appropriate tick sources.

    - EODHD_API_KEY set and non-empty -> one UpstreamStream per feed plus
      the reference-close refresher (real data)
    - Otherwise -> SimulatorDataSource (GBM simulation)

    Returns an unstarted service. Caller must await service.start().
    """
    config = config or MarketConfig.from_env()
    service = MarketDataService(config)

    if config.has_stream_credentials:
        from .stream_client import UpstreamStream

        for feed in FEEDS:
            url = f"{config.stream_base_url}/{feed.name}?api_token={config.eodhd_api_key}"
            service.add_source(UpstreamStream(feed, url, service.ingest, service.references, config))
        service.set_reference_refresher(
            ReferenceCloseRefresher(
                service.rest,
                service.references,
                streamed_instruments(),
                interval=config.reference_interval,
                pause=config.request_pause,
            )
        )
        logger.info("Market data source: upstream streams (%s)", ", ".join(f.name for f in FEEDS))
    else:
        from .simulator import SimulatorDataSource

        service.add_source(
            SimulatorDataSource(
                streamed_instruments(),
                service.ingest,
                service.references,
                update_interval=config.simulator_interval,
            )
        )
        logger.info("Market data source: GBM Simulator")

    return service
