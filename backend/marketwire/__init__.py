"""Live market data ingestion, caching and fan-out.

Public API:
    Tick                 - Immutable normalized price observation
    TickStore            - Thread-safe per-category store with a freshness window
    ResponseCache        - Per-key TTL cache with single-flight refresh
    BroadcastHub         - Pub/sub fan-out to downstream subscribers
    MarketDataService    - Owner of all stores, caches, hub and sources
    MarketConfig         - Environment-driven configuration
    create_market_data_service - Factory that selects upstream streams or simulator
    create_stream_router - FastAPI router factory for the push endpoints
"""

from .config import CacheTTLs, MarketConfig
from .factory import create_market_data_service
from .hub import BroadcastHub
from .models import Category, Tick
from .response_cache import ResponseCache
from .service import MarketDataService
from .store import TickStore
from .stream import create_stream_router

__all__ = [
    "CacheTTLs",
    "Category",
    "Tick",
    "TickStore",
    "ResponseCache",
    "BroadcastHub",
    "MarketDataService",
    "MarketConfig",
    "create_market_data_service",
    "create_stream_router",
]
