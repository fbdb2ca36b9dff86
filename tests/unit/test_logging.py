from __future__ import annotations

import logging
from pathlib import Path

import pytest

from shimloader.config import ConfigError, LoggingConfig
from shimloader.logging import ConsoleFormatter, configure_logging, level_from_string


def test_level_from_string() -> None:
    assert level_from_string("debug") == logging.DEBUG
    assert level_from_string(" Warn ") == logging.WARNING
    with pytest.raises(ConfigError, match="Unknown log level"):
        level_from_string("loud")


def test_console_formatter_symbols() -> None:
    record = logging.LogRecord("shimloader", logging.WARNING, __file__, 1, "careful", None, None)

    assert ConsoleFormatter(use_color=False).format(record) == "! careful"
    assert ConsoleFormatter(use_color=True).format(record).endswith("careful")


def test_console_formatter_names_component_when_verbose() -> None:
    record = logging.LogRecord("shimloader.loader", logging.DEBUG, __file__, 1, "retry", None, None)
    foreign = logging.LogRecord("httpx", logging.INFO, __file__, 1, "GET", None, None)
    formatter = ConsoleFormatter(use_color=False, show_origin=True)

    assert formatter.format(record) == "D [loader] retry"
    assert formatter.format(foreign) == "I [httpx] GET"


def test_configure_logging_writes_log_file(tmp_path: Path, restore_root_logger) -> None:
    log_file = tmp_path / "logs" / "shimloader.log"

    configure_logging(LoggingConfig(level="warning", log_file=log_file))
    logging.getLogger("shimloader.loader").warning("Failed to load %s", "/app/a.py")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logging.getLogger().level == logging.WARNING
    assert "WARNING shimloader.loader: Failed to load /app/a.py" in log_file.read_text(encoding="utf-8")


def test_verbose_forces_debug(restore_root_logger) -> None:
    configure_logging(LoggingConfig(level="error"), verbose=True)

    assert logging.getLogger().level == logging.DEBUG
