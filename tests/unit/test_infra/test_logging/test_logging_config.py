"""Tests for JSON log formatting and logging setup."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator

import pytest

from consul_discovery.core.settings import LoggingSettings
from consul_discovery.infra.logging import JSONFormatter, configure_logging, setup_logging
from consul_discovery.infra.logging import config as logging_config


def _record(msg: str = "Consul poll failed", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="consul_discovery.infra.discovery.watcher",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger(monkeypatch: pytest.MonkeyPatch) -> Iterator[logging.Logger]:
    """Restore root handlers and level changed by dictConfig."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    monkeypatch.setattr(logging_config, "_LOGGING_INITIALIZED", False)
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.mark.unit
class TestJSONFormatter:
    """Test JSON Lines formatting."""

    def test_basic_fields(self):
        """Test level, logger, message and UTC timestamp."""
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "WARNING"
        assert data["logger"] == "consul_discovery.infra.discovery.watcher"
        assert data["message"] == "Consul poll failed"
        assert data["timestamp"].endswith("Z")

    def test_extra_fields_are_top_level(self):
        """Test that fields passed via extra are emitted as keys."""
        record = _record(path="/v1/catalog/services", index=42)

        data = json.loads(JSONFormatter().format(record))

        assert data["path"] == "/v1/catalog/services"
        assert data["index"] == 42
        assert "lineno" not in data

    def test_static_fields(self):
        """Test that static fields are added to every record."""
        data = json.loads(JSONFormatter(static={"service": "sd"}).format(_record()))

        assert data["service"] == "sd"

    def test_exception_stays_on_one_line(self):
        """Test that tracebacks are escaped so output stays JSONL."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        output = JSONFormatter().format(record)

        assert "\n" not in output
        assert "ValueError: boom" in json.loads(output)["exception"]

    def test_unserializable_extra(self):
        """Test that values json cannot encode are stringified."""
        data = json.loads(JSONFormatter().format(_record(error=ValueError("bad"))))

        assert data["error"] == "bad"


@pytest.mark.unit
class TestConfigureLogging:
    """Test dictConfig-based setup."""

    def test_json_console_handler(self, restore_root_logger: logging.Logger):
        """Test that JSON mode installs a stderr handler with JSONFormatter."""
        configure_logging(log_level="DEBUG", json_logs=True)

        assert restore_root_logger.level == logging.DEBUG
        (handler,) = restore_root_logger.handlers
        assert isinstance(handler, logging.StreamHandler)
        assert isinstance(handler.formatter, JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_service_name_is_static_field(self, restore_root_logger: logging.Logger):
        """Test that the service name is stamped on every JSON record."""
        configure_logging(json_logs=True, service_name="consul-discovery")

        (handler,) = restore_root_logger.handlers
        data = json.loads(handler.format(_record()))
        assert data["service"] == "consul-discovery"

    def test_text_format(self, restore_root_logger: logging.Logger):
        """Test that text mode uses a plain formatter."""
        configure_logging(json_logs=False)

        (handler,) = restore_root_logger.handlers
        assert not isinstance(handler.formatter, JSONFormatter)

    def test_console_disabled(self, restore_root_logger: logging.Logger):
        """Test that disabling the console leaves only a NullHandler."""
        configure_logging(console_enabled=False)

        (handler,) = restore_root_logger.handlers
        assert isinstance(handler, logging.NullHandler)

    def test_setup_logging_runs_once(self, restore_root_logger: logging.Logger):
        """Test that setup_logging ignores repeated calls unless forced."""
        setup_logging(LoggingSettings(level="ERROR"))
        setup_logging(LoggingSettings(level="DEBUG"))
        assert restore_root_logger.level == logging.ERROR

        setup_logging(LoggingSettings(level="DEBUG"), force=True)
        assert restore_root_logger.level == logging.DEBUG

    def test_setup_logging_overrides(self, restore_root_logger: logging.Logger):
        """Test that keyword overrides win over settings."""
        setup_logging(LoggingSettings(level="INFO"), log_level="WARNING", console_enabled=False)

        assert restore_root_logger.level == logging.WARNING
        assert isinstance(restore_root_logger.handlers[0], logging.NullHandler)
