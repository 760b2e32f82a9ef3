"""CLI commands for market data views."""

import json
from typing import List

import click
from rich import box
from rich.table import Table

from ..core.cli_base import async_command, console, fail_unless, get_settings, open_service, report_outcome
from ..data.models import DominanceShare, MarketCoin, Outcome, PricePoint, Sector
from ..data.resources import PRICE_HISTORY_DAYS, global_metrics_key, market_list_key, sector_list_key
from ..data.refresher import REFRESH_INTERVALS


def _format_large(value: float) -> str:
    """Abbreviate large currency amounts."""
    for threshold, suffix in ((1e12, 'T'), (1e9, 'B'), (1e6, 'M')):
        if abs(value) >= threshold:
            return f"{value / threshold:,.2f}{suffix}"
    return f"{value:,.2f}"


def _change_cell(change: float) -> str:
    color = "green" if change >= 0 else "red"
    return f"[{color}]{change:+.2f}%[/{color}]"


def display_markets_table(coins: List[MarketCoin], currency: str) -> None:
    table = Table(title=f"Markets by 24h Volume ({currency.upper()})", box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Coin", style="cyan")
    table.add_column("Symbol", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("24h Change", justify="right")
    table.add_column("Volume", justify="right")
    table.add_column("Market Cap", justify="right")

    for rank, coin in enumerate(coins, 1):
        table.add_row(
            str(rank),
            coin.name,
            coin.symbol.upper(),
            f"{float(coin.current_price):,.4f}",
            _change_cell(coin.price_change_or_zero),
            _format_large(float(coin.total_volume)),
            _format_large(float(coin.market_cap)),
        )

    console.print(table)


def display_dominance_table(shares: List[DominanceShare], currency: str) -> None:
    table = Table(title=f"Market Dominance ({currency.upper()})", box=box.ROUNDED)
    table.add_column("Symbol", style="bold cyan")
    table.add_column("Dominance", justify="right")
    table.add_column("Market Cap", justify="right")
    table.add_column("Image", style="dim", overflow="fold")

    for share in shares:
        table.add_row(
            share.symbol,
            f"{share.percentage:.2f}%",
            _format_large(share.market_cap),
            share.image or "-",
        )

    console.print(table)


def display_sectors_table(sectors: List[Sector]) -> None:
    table = Table(title="Sectors by Market Cap", box=box.ROUNDED)
    table.add_column("Sector", style="cyan")
    table.add_column("Market Cap", justify="right")
    table.add_column("24h Change", justify="right")

    for sector in sectors:
        table.add_row(
            sector.name,
            _format_large(sector.market_cap) if sector.market_cap is not None else "-",
            _change_cell(sector.market_cap_change_24h)
            if sector.market_cap_change_24h is not None else "-",
        )

    console.print(table)


def display_history_table(coin_id: str, days: int, points: List[PricePoint], currency: str) -> None:
    if not points:
        console.print(f"[yellow]No price history for {coin_id}[/yellow]")
        return

    prices = [float(point.price) for point in points]
    first, last = prices[0], prices[-1]
    change = ((last - first) / first * 100) if first else 0.0

    table = Table(title=f"{coin_id} over {days}d ({currency.upper()})", box=box.SIMPLE)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("From", points[0].timestamp.strftime('%Y-%m-%d %H:%M'))
    table.add_row("To", points[-1].timestamp.strftime('%Y-%m-%d %H:%M'))
    table.add_row("Samples", str(len(points)))
    table.add_row("Open", f"{first:,.4f}")
    table.add_row("Close", f"{last:,.4f}")
    table.add_row("High", f"{max(prices):,.4f}")
    table.add_row("Low", f"{min(prices):,.4f}")
    table.add_row("Change", _change_cell(change))

    console.print(table)


@click.command()
@click.option('--currency', '-c', default='usd', help='Quote currency (default: usd)')
@click.option('--page', type=click.IntRange(min=1), default=1, help='Result page (100 coins per page)')
@click.option('--limit', '-n', type=click.IntRange(min=1), default=25, help='Rows to display')
@click.option('--refresh', is_flag=True, help='Bypass the cache and the rate limiter')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format')
@click.pass_context
@async_command
async def markets(ctx, currency: str, page: int, limit: int, refresh: bool, output_format: str):
    """Show the top coins by 24h trading volume.

    Examples:
        crypto-market markets
        crypto-market markets --currency eur --limit 10
    """
    async with open_service(ctx) as service:
        outcome = await service.get_market_list(currency=currency, page=page, force_refresh=refresh)

    fail_unless(outcome, "market list")
    coins = outcome.value[:limit]

    if output_format == 'json':
        console.print_json(json.dumps([coin.to_dict() for coin in coins]))
    else:
        display_markets_table(coins, currency)


@click.command(name='global')
@click.option('--currency', '-c', default='usd', help='Quote currency (default: usd)')
@click.option('--top', type=click.IntRange(min=1), default=10, help='Coins to fetch images for')
@click.option('--refresh', is_flag=True, help='Bypass the cache and the rate limiter')
@click.pass_context
@async_command
async def global_overview(ctx, currency: str, top: int, refresh: bool):
    """Show market dominance across the whole market."""
    async with open_service(ctx) as service:
        outcome = await service.get_global_overview(currency=currency, top=top, force_refresh=refresh)

    fail_unless(outcome, "global market data")
    display_dominance_table(outcome.value, currency)


@click.command()
@click.option('--limit', '-n', type=click.IntRange(min=1), default=25, help='Rows to display')
@click.option('--refresh', is_flag=True, help='Bypass the cache and the rate limiter')
@click.pass_context
@async_command
async def sectors(ctx, limit: int, refresh: bool):
    """Show coin categories ranked by market cap."""
    async with open_service(ctx) as service:
        outcome = await service.get_sectors(force_refresh=refresh)

    fail_unless(outcome, "sectors")
    display_sectors_table(outcome.value[:limit])


@click.command()
@click.argument('coin_id')
@click.option('--days', '-d', type=click.Choice([str(d) for d in PRICE_HISTORY_DAYS]),
              default='7', help='Time frame in days')
@click.option('--currency', '-c', default='usd', help='Quote currency (default: usd)')
@click.option('--refresh', is_flag=True, help='Bypass the cache and the rate limiter')
@click.pass_context
@async_command
async def history(ctx, coin_id: str, days: str, currency: str, refresh: bool):
    """Show a price summary for COIN_ID (a CoinGecko id such as 'bitcoin')."""
    async with open_service(ctx) as service:
        outcome = await service.get_price_history(coin_id, days=int(days), currency=currency,
                                                  force_refresh=refresh)

    fail_unless(outcome, f"price history for {coin_id}")
    display_history_table(coin_id, int(days), outcome.value, currency)


_WATCHABLE = {
    'markets': (lambda currency: market_list_key(currency),
                lambda outcome, currency: display_markets_table(outcome.value[:25], currency)),
    'global': (lambda currency: global_metrics_key(),
               lambda outcome, currency: console.print(
                   f"Total market cap: {_format_large(outcome.value.total_for(currency) or 0.0)} "
                   f"{currency.upper()}")),
    'sectors': (lambda currency: sector_list_key(),
                lambda outcome, currency: display_sectors_table(outcome.value[:25])),
}


def _render_update(outcome: Outcome, resource: str, currency: str) -> None:
    if report_outcome(outcome, resource):
        _WATCHABLE[resource][1](outcome, currency)


@click.command()
@click.argument('resource', type=click.Choice(sorted(_WATCHABLE)), default='markets')
@click.option('--currency', '-c', default='usd', help='Quote currency (default: usd)')
@click.option('--interval', type=click.Choice([str(i) for i in REFRESH_INTERVALS]),
              default=None, help='Refresh interval in seconds (default: refresh.interval)')
@click.option('--updates', type=click.IntRange(min=1), default=None,
              help='Exit after this many displayed results')
@click.pass_context
@async_command
async def watch(ctx, resource: str, currency: str, interval, updates):
    """Keep RESOURCE on screen and show every refreshed result."""
    async with open_service(ctx) as service:
        key = _WATCHABLE[resource][0](currency)
        seconds = float(interval) if interval else float(get_settings(ctx)['config'].get('refresh.interval', 30))

        refresher = service.background_refresher(seconds)
        refresher.track(key)

        async with service.subscribe(key) as subscription:
            _render_update(await service.resolve(key), resource, currency)
            shown = 1
            if updates is not None and shown >= updates:
                return

            await refresher.start()
            console.print(f"[dim]Refreshing every {seconds:.0f}s, press Ctrl+C to stop[/dim]")
            async for outcome in subscription:
                _render_update(outcome, resource, currency)
                shown += 1
                if updates is not None and shown >= updates:
                    break
