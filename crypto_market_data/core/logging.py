"""
Logging for the market data CLI.

Console output goes through rich, an optional rotating file receives one
JSON object per record, and errors can be forwarded to Sentry. Settings
come from the ``logging`` section of the loaded configuration.

The data layer logs a DEBUG line for every cache hit and dispatch; set
``logging.sampling_rate`` below 1.0 to keep only a fraction of those.
"""

import json
import logging
import logging.handlers
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler

try:
    import sentry_sdk
    from sentry_sdk.integrations.logging import LoggingIntegration
    SENTRY_AVAILABLE = True
except ImportError:
    SENTRY_AVAILABLE = False

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILE = "~/.crypto_market/logs/crypto_market.log"
SAMPLED_LOGGER_PREFIX = "crypto_market_data.data"

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {'message', 'asctime'}


def _level(name: Any, default: int) -> int:
    if name is None:
        return default
    value = logging.getLevelName(str(name).upper())
    return value if isinstance(value, int) else default


class JsonLineFormatter(logging.Formatter):
    """Renders each record as a single JSON object.

    Fields passed with ``extra=`` (for example the resource key a cache
    message is about) are collected under ``context``.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = {
                "class": record.exc_info[0].__name__,
                "detail": str(record.exc_info[1]),
                "stack": self.formatException(record.exc_info).splitlines(),
            }

        if self.include_extra:
            context = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
            if context:
                entry["context"] = context

        return json.dumps(entry, default=str)


class DebugSampler(logging.Filter):
    """Lets through a fraction of the data layer's DEBUG records.

    Records above DEBUG, and DEBUG records from other loggers, always pass.
    """

    def __init__(self, rate: float, prefix: str = SAMPLED_LOGGER_PREFIX):
        super().__init__()
        if not 0.0 <= rate <= 1.0:
            raise ValueError("sampling rate must be between 0 and 1")
        self.rate = rate
        self.prefix = prefix

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > logging.DEBUG or not record.name.startswith(self.prefix):
            return True
        return random.random() < self.rate


class LoggingManager:
    """
    Installs root logger handlers from the ``logging`` config section.

    Calling :meth:`setup_logging` again replaces the handlers installed
    by the previous call, so each CLI invocation can reconfigure logging.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, console: Optional[Console] = None):
        self.config = config or {}
        self.console = console
        self.handlers: List[logging.Handler] = []
        self.sentry_initialized = False

    @property
    def settings(self) -> Dict[str, Any]:
        return self.config.get('logging', {}) or {}

    def _handler_settings(self, name: str) -> Dict[str, Any]:
        return (self.settings.get('handlers', {}) or {}).get(name, {}) or {}

    def setup_logging(self) -> None:
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()

        self.handlers = [h for h in (self._console_handler(), self._file_handler()) if h is not None]

        rate = float(self.settings.get('sampling_rate', 1.0))
        if rate < 1.0:
            sampler = DebugSampler(rate)
            for handler in self.handlers:
                handler.addFilter(sampler)

        root_logger.setLevel(_level(self.settings.get('level'), logging.WARNING))
        for handler in self.handlers:
            root_logger.addHandler(handler)

        for name in ('aiosqlite', 'asyncio'):
            logging.getLogger(name).setLevel(logging.WARNING)

        self._init_sentry()

    def _console_handler(self) -> Optional[logging.Handler]:
        options = self._handler_settings('console')
        if not options.get('enabled', True):
            return None

        if self.settings.get('structured', False):
            handler = logging.StreamHandler()
            handler.setFormatter(JsonLineFormatter())
        else:
            handler = RichHandler(console=self.console or Console(stderr=True),
                                  rich_tracebacks=True, show_path=False, markup=False)
            handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

        handler.setLevel(_level(options.get('level'), logging.WARNING))
        return handler

    def _file_handler(self) -> Optional[logging.Handler]:
        options = self._handler_settings('file')
        if not options.get('enabled', False):
            return None

        path = Path(options.get('filename') or DEFAULT_LOG_FILE).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=int(options.get('max_bytes', 10 * 1024 * 1024)),
            backupCount=int(options.get('backup_count', 5)),
            encoding='utf-8',
        )
        handler.setLevel(_level(options.get('level'), logging.DEBUG))
        handler.setFormatter(JsonLineFormatter())
        return handler

    def _init_sentry(self) -> None:
        options = self._handler_settings('sentry')
        if self.sentry_initialized or not options.get('enabled', False) or not options.get('dsn'):
            return

        if not SENTRY_AVAILABLE:
            logger.warning("Sentry reporting is enabled but sentry-sdk is not installed")
            return

        try:
            sentry_sdk.init(
                dsn=options['dsn'],
                environment=options.get('environment', 'development'),
                integrations=[LoggingIntegration(
                    level=_level(options.get('level'), logging.ERROR),
                    event_level=logging.ERROR,
                )],
                attach_stacktrace=True,
                send_default_pii=False,
            )
        except Exception as e:
            logger.warning(f"Sentry reporting disabled: {e}")
            return

        self.sentry_initialized = True
        logger.info("Sentry reporting enabled")

    def capture_exception(self, exception: Exception, tags: Optional[Dict[str, Any]] = None) -> None:
        """Forward an exception to Sentry, tagged with the command that raised it."""
        if not self.sentry_initialized:
            return

        with sentry_sdk.new_scope() as scope:
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            sentry_sdk.capture_exception(exception)


_manager: Optional[LoggingManager] = None


def get_logging_manager() -> LoggingManager:
    global _manager
    if _manager is None:
        _manager = LoggingManager()
    return _manager


def setup_logging(config: Optional[Dict[str, Any]] = None, console: Optional[Console] = None) -> LoggingManager:
    """(Re)configure process-wide logging from a config tree."""
    manager = get_logging_manager()
    if config is not None:
        manager.config = config
    if console is not None:
        manager.console = console
    manager.setup_logging()
    return manager


def capture_exception(exception: Exception, tags: Optional[Dict[str, Any]] = None) -> None:
    get_logging_manager().capture_exception(exception, tags)
