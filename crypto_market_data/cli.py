"""
Main CLI module.

Every command loads configuration, opens a DataService for the duration
of the command and renders the resulting outcome with rich.
"""

import logging
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .commands.cache import cache
from .commands.market import global_overview, history, markets, sectors, watch
from .commands.watchlist import watchlist
from .core.cli_base import console

logger = logging.getLogger(__name__)


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging and tracebacks')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config-dir', type=click.Path(file_okay=False, path_type=Path),
              default=None, help='Directory holding config.yaml (default: ~/.crypto_market)')
@click.option('--memory-store', is_flag=True, help='Keep the cache in memory only for this run')
@click.pass_context
def main(ctx: click.Context, debug: bool, verbose: bool, config_dir: Optional[Path],
         memory_store: bool) -> None:
    """
    Crypto Market Data - cached, rate-limited CoinGecko market data in your terminal.

    Results are served from a local cache while fresh. Upstream requests are
    throttled per data type and retried with backoff; when the API is
    unavailable the last known data is shown and marked as stale.
    """
    settings = ctx.ensure_object(dict)
    settings.update(debug=debug, verbose=verbose, config_dir=config_dir, memory_store=memory_store)


@main.command()
def version() -> None:
    """Show version information."""
    console.print(f"Crypto Market Data v{__version__}")


def register_commands():
    """Register all command groups."""
    main.add_command(markets)
    main.add_command(global_overview)
    main.add_command(sectors)
    main.add_command(history)
    main.add_command(watch)
    main.add_command(watchlist)
    main.add_command(cache)


register_commands()


if __name__ == '__main__':
    main()
