"""Shared plumbing for CLI commands: async entry, service lifecycle and outcome rendering."""

import asyncio
import functools
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict

import click
from rich.console import Console

from ..data.models import Outcome
from ..data.service import DataService
from .config import ConfigError, ConfigManager
from .logging import capture_exception, setup_logging

console = Console()
logger = logging.getLogger(__name__)


def async_command(f):
    """Decorator to make Click commands async-compatible."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def get_settings(ctx: click.Context) -> Dict[str, Any]:
    """Options collected by the top-level group."""
    return ctx.find_root().ensure_object(dict)


async def load_config(settings: Dict[str, Any]) -> ConfigManager:
    """Load configuration and apply command-line overrides."""
    config = ConfigManager(config_dir=settings.get('config_dir'))
    await config.initialize()

    if settings.get('memory_store'):
        config.set('storage.backend', 'memory')

    if settings.get('debug'):
        level = 'DEBUG'
    elif settings.get('verbose'):
        level = 'INFO'
    else:
        level = None

    if level is not None:
        config.set('logging.level', level)
        config.set('logging.handlers.console.level', level)

    setup_logging(config.get_all())
    return config


@asynccontextmanager
async def open_service(ctx: click.Context) -> AsyncIterator[DataService]:
    """Build, start and finally stop the data service for one command run.

    A ``service_factory`` in the click context object replaces
    :meth:`DataService.from_config`; tests use it to inject a fake transport.
    """
    settings = get_settings(ctx)

    try:
        config = await load_config(settings)
        settings['config'] = config
        factory: Callable[[ConfigManager], DataService] = settings.get(
            'service_factory', DataService.from_config
        )
        service = factory(config)
    except ConfigError as e:
        raise click.ClickException(f"Configuration error: {e}")

    try:
        async with service:
            yield service
    except (click.ClickException, click.exceptions.Exit):
        raise
    except Exception as e:
        logger.error(f"Command failed: {e}")
        capture_exception(e, {"command": ctx.info_name})
        if settings.get('debug'):
            console.print_exception()
        raise click.ClickException(str(e))


def report_outcome(outcome: Outcome, what: str) -> bool:
    """Print the status line for an outcome.

    Returns:
        False when there is no value to display
    """
    if outcome.is_failed:
        console.print(
            f"[red]Could not load {what}: {outcome.error.message} "
            f"(after {outcome.attempts} attempt(s))[/red]"
        )
        return False

    if outcome.is_stale:
        stored = datetime.fromtimestamp(outcome.stored_at).strftime('%Y-%m-%d %H:%M:%S')
        console.print(
            f"[yellow]Showing stale {what} from {stored}: {outcome.reason.message}[/yellow]"
        )

    return True


def fail_unless(outcome: Outcome, what: str) -> None:
    """Report an outcome and exit with status 1 if it carries no value."""
    if not report_outcome(outcome, what):
        raise click.exceptions.Exit(1)
