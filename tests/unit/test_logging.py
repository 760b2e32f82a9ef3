"""Tests for logging setup."""

import json
import logging
import logging.handlers
import sys
from unittest.mock import patch

import pytest
from rich.logging import RichHandler

from crypto_market_data.core.logging import DebugSampler, JsonLineFormatter, LoggingManager


def make_record(level=logging.INFO, msg="Fetched %s", args=("market_list",), exc_info=None,
                name="crypto_market_data.test", **extra):
    record = logging.LogRecord(name, level, __file__, 10, msg, args, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def manager():
    manager = LoggingManager()

    yield manager

    root_logger = logging.getLogger()
    for handler in manager.handlers:
        root_logger.removeHandler(handler)
        handler.close()


class TestJsonLineFormatter:
    """Test JSON log formatting."""

    def test_basic_fields(self):
        data = json.loads(JsonLineFormatter().format(make_record()))

        assert data["severity"] == "INFO"
        assert data["logger"] == "crypto_market_data.test"
        assert data["event"] == "Fetched market_list"
        assert "error" not in data
        assert "context" not in data

    def test_extra_fields(self):
        record = make_record(resource="market_list", key=object())

        data = json.loads(JsonLineFormatter().format(record))

        assert data["context"]["resource"] == "market_list"
        assert data["context"]["key"].startswith("<object")

    def test_extra_fields_can_be_excluded(self):
        record = make_record(resource="market_list")

        data = json.loads(JsonLineFormatter(include_extra=False).format(record))

        assert "context" not in data

    def test_exception_details(self):
        try:
            raise ValueError("bad payload")
        except ValueError:
            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

        data = json.loads(JsonLineFormatter().format(record))

        assert data["error"]["class"] == "ValueError"
        assert data["error"]["detail"] == "bad payload"


class TestDebugSampler:
    """Test DEBUG sampling."""

    def test_non_debug_always_passes(self):
        sampling = DebugSampler(rate=0.0)

        assert sampling.filter(make_record(level=logging.WARNING))

    def test_data_layer_debug_sampled(self):
        sampling = DebugSampler(rate=0.5)
        record = make_record(level=logging.DEBUG, name="crypto_market_data.data.service")

        with patch("crypto_market_data.core.logging.random.random", return_value=0.7):
            assert not sampling.filter(record)
        with patch("crypto_market_data.core.logging.random.random", return_value=0.2):
            assert sampling.filter(record)

    def test_other_debug_records_pass(self):
        assert DebugSampler(rate=0.0).filter(make_record(level=logging.DEBUG, name="crypto_market_data.cli"))

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            DebugSampler(rate=1.5)


class TestLoggingManager:
    """Test handler setup from configuration."""

    def test_default_console_handler(self, manager):
        manager.setup_logging()

        assert len(manager.handlers) == 1
        assert isinstance(manager.handlers[0], RichHandler)
        assert manager.handlers[0] in logging.getLogger().handlers

    def test_structured_console_and_file(self, manager, temp_dir):
        log_file = temp_dir / "logs" / "crypto_market.log"
        manager.config = {"logging": {
            "level": "DEBUG",
            "structured": True,
            "handlers": {"file": {"enabled": True, "filename": str(log_file), "level": "INFO"}},
        }}

        manager.setup_logging()

        console_handler, file_handler = manager.handlers
        assert isinstance(console_handler.formatter, JsonLineFormatter)
        assert isinstance(file_handler, logging.handlers.RotatingFileHandler)
        assert file_handler.level == logging.INFO
        assert log_file.parent.exists()

        logging.getLogger("crypto_market_data.test").info("written to file")
        file_handler.flush()
        assert "written to file" in log_file.read_text()

    def test_sampling_applies_to_debug_handlers(self, manager):
        manager.config = {"logging": {
            "sampling_rate": 0.1,
            "handlers": {"console": {"level": "DEBUG"}},
        }}

        manager.setup_logging()

        assert any(isinstance(f, DebugSampler) for f in manager.handlers[0].filters)

    def test_setup_replaces_previous_handlers(self, manager):
        manager.setup_logging()
        first = manager.handlers[0]

        manager.setup_logging()

        assert first not in logging.getLogger().handlers
        assert len(manager.handlers) == 1

    def test_console_disabled(self, manager):
        manager.config = {"logging": {"handlers": {"console": {"enabled": False}}}}

        manager.setup_logging()

        assert manager.handlers == []

    def test_sentry_requires_dsn(self, manager):
        manager.config = {"logging": {"handlers": {"sentry": {"enabled": True, "dsn": None}}}}

        manager.setup_logging()

        assert manager.sentry_initialized is False
        manager.capture_exception(RuntimeError("ignored"))
