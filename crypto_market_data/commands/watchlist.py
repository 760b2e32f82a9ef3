"""CLI commands for managing the watchlist."""

import click

from ..core.cli_base import async_command, console, fail_unless, open_service
from .market import display_markets_table


@click.group()
def watchlist():
    """Manage and show watched coins."""
    pass


@watchlist.command()
@click.option('--currency', '-c', default='usd', help='Quote currency (default: usd)')
@click.option('--refresh', is_flag=True, help='Bypass the cache and the rate limiter')
@click.pass_context
@async_command
async def show(ctx, currency: str, refresh: bool):
    """Show market data for every watched coin."""
    async with open_service(ctx) as service:
        outcome = await service.get_watchlist(currency=currency, force_refresh=refresh)

    fail_unless(outcome, "watchlist")
    if not outcome.value:
        console.print("[yellow]Watchlist is empty. Add coins with 'watchlist add COIN_ID'.[/yellow]")
        return

    display_markets_table(outcome.value, currency)


@watchlist.command()
@click.argument('coin_id')
@click.pass_context
@async_command
async def add(ctx, coin_id: str):
    """Add COIN_ID (e.g. 'bitcoin') to the watchlist."""
    async with open_service(ctx) as service:
        added = await service.watchlist.add(coin_id.lower())

    if added:
        console.print(f"[green]Added {coin_id} to the watchlist[/green]")
    else:
        console.print(f"[yellow]{coin_id} is already on the watchlist[/yellow]")


@watchlist.command()
@click.argument('coin_id')
@click.pass_context
@async_command
async def remove(ctx, coin_id: str):
    """Remove COIN_ID from the watchlist."""
    async with open_service(ctx) as service:
        removed = await service.watchlist.remove(coin_id.lower())

    if removed:
        console.print(f"[green]Removed {coin_id} from the watchlist[/green]")
    else:
        console.print(f"[yellow]{coin_id} is not on the watchlist[/yellow]")
