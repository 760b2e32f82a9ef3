"""
Crypto Market Data - cached, rate-limited access to cryptocurrency market data.

This package provides a data service that serves CoinGecko market data from a
two-tier cache, throttles and retries upstream requests, coalesces concurrent
requests for the same resource and falls back to stale data when the API is
unavailable.
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Core imports for public API
from crypto_market_data.core.config import ConfigManager
from crypto_market_data.data.service import DataService

__all__ = [
    "__version__",
    "__license__",
    "ConfigManager",
    "DataService",
]
