"""CLI commands for inspecting and clearing the cache."""

import click
from rich import box
from rich.table import Table

from ..core.cli_base import async_command, console, open_service
from ..data.resources import ResourceClass


@click.group()
def cache():
    """Inspect and clear cached market data."""
    pass


@cache.command()
@click.option('--resource', '-r', type=click.Choice([c.value for c in ResourceClass]),
              default=None, help='Only clear this resource class')
@click.pass_context
@async_command
async def clear(ctx, resource):
    """Remove cached entries from memory and disk."""
    resource_class = ResourceClass(resource) if resource else None

    async with open_service(ctx) as service:
        removed = await service.clear_cache(resource_class)

    scope = resource if resource else "all resources"
    console.print(f"[green]Cleared {removed} cached entries ({scope})[/green]")


@cache.command()
@click.pass_context
@async_command
async def stats(ctx):
    """Show cache and persistence statistics."""
    async with open_service(ctx) as service:
        cache_stats = service.cache.get_stats()
        store_stats = await service.blob_store.get_stats()

    table = Table(title="Cache Statistics", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    for name, value in cache_stats.items():
        table.add_row(name.replace('_', ' ').title(), str(value))

    if store_stats:
        for name, value in store_stats.items():
            table.add_row(f"Stored {name.replace('_', ' ')}", str(value))

    console.print(table)
