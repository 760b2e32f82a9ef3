"""
Command modules for the Crypto Market Data CLI.

Commands are registered on the main group in ``crypto_market_data.cli``.
"""
