"""Logging setup for the shimloader command line."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import ConfigError, LoggingConfig

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ConsoleFormatter(logging.Formatter):
    """Prefix each message with a level marker and, in verbose mode, its component.

    ``shimloader.loader`` records show up as ``[loader] ...`` so retries and
    dispatches can be told apart from fetch and config messages.
    """

    MARKERS: dict[int, tuple[str, str]] = {
        logging.DEBUG: ("D", "\x1b[2;36m"),
        logging.INFO: ("I", "\x1b[32m"),
        logging.WARNING: ("!", "\x1b[33m"),
        logging.ERROR: ("X", "\x1b[31m"),
        logging.CRITICAL: ("X", "\x1b[1;31m"),
    }
    RESET = "\x1b[0m"

    def __init__(self, use_color: bool, *, show_origin: bool = False) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color
        self.show_origin = show_origin

    def format(self, record: logging.LogRecord) -> str:
        marker, color = self.MARKERS.get(record.levelno, ("?", "\x1b[37m"))
        message = super().format(record)
        if self.show_origin:
            message = f"[{_component(record.name)}] {message}"
        if self.use_color:
            marker = f"{color}{marker}{self.RESET}"
        return f"{marker} {message}"


def _component(logger_name: str) -> str:
    prefix, _, rest = logger_name.partition(".")
    return rest if prefix == "shimloader" and rest else logger_name


def configure_logging(logging_config: LoggingConfig, *, verbose: bool = False) -> None:
    """Install the console handler and, if configured, a rotating log file."""

    handlers: list[logging.Handler] = [_build_console_handler(show_origin=verbose)]
    if logging_config.log_file is not None:
        handlers.append(_build_file_handler(logging_config.log_file))

    level = logging.DEBUG if verbose else level_from_string(logging_config.level)
    logging.basicConfig(level=level, handlers=handlers, force=True)


def _build_file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=5)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _build_console_handler(*, show_origin: bool = False) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        ConsoleFormatter(_stream_supports_color(handler), show_origin=show_origin)
    )
    return handler


def _stream_supports_color(handler: logging.Handler) -> bool:
    stream = getattr(handler, "stream", None)
    return bool(getattr(stream, "isatty", lambda: False)())


def level_from_string(level: str) -> int:
    normalized = level.strip().upper()
    mapping = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    try:
        return mapping[normalized]
    except KeyError as exc:
        raise ConfigError(f"Unknown log level: {level}") from exc


__all__ = ["ConsoleFormatter", "configure_logging", "level_from_string"]
