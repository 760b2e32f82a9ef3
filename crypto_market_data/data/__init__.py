"""Data layer for crypto market data.

This module provides the resource model, the two-tier cache, rate limiting,
retry policy, request coalescing and the HTTP transport used by
:class:`crypto_market_data.data.service.DataService`.
"""

from .errors import (
    DataAccessError,
    TransportError,
    RateLimitedError,
    ServerError,
    ThrottledError,
    DecodeError
)
from .models import (
    CacheEntry,
    Outcome,
    Fresh,
    Stale,
    Failed,
    MarketCoin,
    GlobalMetrics,
    DominanceShare,
    Sector,
    PricePoint
)
from .resources import ResourceClass, ResourceKey, ResourcePolicy, DEFAULT_POLICIES
from .blob_store import BlobStore, MemoryBlobStore, SQLiteBlobStore
from .cache import CacheEntryStore
from .rate_limiter import RateLimiter
from .retry import RetryPolicy, GIVE_UP
from .coalescer import RequestCoalescer

__all__ = [
    'DataAccessError',
    'TransportError',
    'RateLimitedError',
    'ServerError',
    'ThrottledError',
    'DecodeError',
    'CacheEntry',
    'Outcome',
    'Fresh',
    'Stale',
    'Failed',
    'MarketCoin',
    'GlobalMetrics',
    'DominanceShare',
    'Sector',
    'PricePoint',
    'ResourceClass',
    'ResourceKey',
    'ResourcePolicy',
    'DEFAULT_POLICIES',
    'BlobStore',
    'MemoryBlobStore',
    'SQLiteBlobStore',
    'CacheEntryStore',
    'RateLimiter',
    'RetryPolicy',
    'GIVE_UP',
    'RequestCoalescer',
]
