"""
Core components: configuration and logging.
"""

from crypto_market_data.core.config import ConfigError, ConfigManager, build_policies
from crypto_market_data.core.logging import setup_logging

__all__ = [
    "ConfigError",
    "ConfigManager",
    "build_policies",
    "setup_logging",
]
