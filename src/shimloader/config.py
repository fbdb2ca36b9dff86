"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .fetch import DEFAULT_HTTP_TIMEOUT
from .paths import DEFAULT_EXTENSION, DEFAULT_MODULES_DIR, is_url
from .types import Strategy

LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SHIMLOADER_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/shimloader/config.yaml")
DEFAULT_LOG_LEVEL = "info"
DEFAULT_MANIFEST_NAME = "package.json"
DEFAULT_ENTRY_FIELD = "main"
DEFAULT_RETRY_LIMIT = 64


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    log_file: Path | None = None


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root: str
    modules_dir: str = DEFAULT_MODULES_DIR
    manifest_name: str = DEFAULT_MANIFEST_NAME
    entry_field: str = DEFAULT_ENTRY_FIELD
    default_extension: str = DEFAULT_EXTENSION
    retry_limit: int | None = DEFAULT_RETRY_LIMIT
    strategy: Strategy = Strategy.RERUN
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML.

    An explicit path (argument or environment) must exist; when neither is
    given and the default file is absent, defaults rooted at the current
    directory are returned.
    """

    config_path, explicit = _resolve_config_path(path)
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        LOGGER.debug("No config at %s, using defaults", config_path)
        return default_config()

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return parse_config(raw, base_dir=config_path.parent)


def default_config(root: str | Path | None = None) -> Config:
    return Config(root=normalize_root(root if root is not None else Path.cwd(), Path.cwd()))


def parse_config(raw: dict[str, Any], *, base_dir: Path) -> Config:
    root = normalize_root(raw.get("root") or base_dir, base_dir)
    return Config(
        root=root,
        modules_dir=_parse_name(raw.get("modules_dir"), "modules_dir", DEFAULT_MODULES_DIR),
        manifest_name=_parse_name(raw.get("manifest_name"), "manifest_name", DEFAULT_MANIFEST_NAME),
        entry_field=_parse_name(raw.get("entry_field"), "entry_field", DEFAULT_ENTRY_FIELD),
        default_extension=_parse_extension(raw.get("default_extension")),
        retry_limit=_parse_retry_limit(raw),
        strategy=parse_strategy(raw.get("strategy")),
        http_timeout=_parse_timeout(raw.get("http_timeout")),
        logging=_parse_logging(raw.get("logging"), base_dir),
    )


def normalize_root(value: Any, base_dir: Path) -> str:
    """Return ``value`` as a URL or an absolute POSIX path string."""

    if isinstance(value, Path):
        path = value
    elif isinstance(value, str):
        if is_url(value):
            return value.rstrip("/")
        path = Path(value)
    else:
        raise ConfigError("root must be a string path or URL.")
    path = path.expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve().as_posix()


def parse_strategy(value: Any) -> Strategy:
    if value is None:
        return Strategy.RERUN
    if isinstance(value, Strategy):
        return value
    try:
        return Strategy(str(value).strip().lower())
    except ValueError as exc:
        choices = ", ".join(strategy.value for strategy in Strategy)
        raise ConfigError(f"strategy must be one of: {choices}.") from exc


def _resolve_config_path(explicit: Path | str | None) -> tuple[Path, bool]:
    if explicit:
        return Path(explicit).expanduser(), True
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser(), True
    return DEFAULT_CONFIG_PATH.expanduser(), False


def _parse_name(value: Any, field_name: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{field_name} must be a non-empty string.")
    if "/" in value.strip("/"):
        raise ConfigError(f"{field_name} must be a single path segment.")
    return value.strip("/")


def _parse_extension(value: Any) -> str:
    if value is None:
        return DEFAULT_EXTENSION
    if not isinstance(value, str):
        raise ConfigError("default_extension must be a string.")
    text = value.strip()
    if text and not text.startswith("."):
        text = f".{text}"
    return text


def _parse_retry_limit(raw: dict[str, Any]) -> int | None:
    if "retry_limit" not in raw:
        return DEFAULT_RETRY_LIMIT
    value = raw["retry_limit"]
    if value is None:
        LOGGER.warning("retry_limit is disabled; a dependency cycle will re-run modules forever.")
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError("retry_limit must be a positive integer or null.")
    return value


def _parse_timeout(value: Any) -> float:
    if value is None:
        return DEFAULT_HTTP_TIMEOUT
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError("http_timeout must be a positive number of seconds.")
    return float(value)


def _parse_logging(value: Any, base_dir: Path) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    raw_file = value.get("log_file")
    log_file: Path | None = None
    if raw_file is not None:
        if not isinstance(raw_file, str) or not raw_file.strip():
            raise ConfigError("logging.log_file must be a string path.")
        log_file = Path(raw_file).expanduser()
        if not log_file.is_absolute():
            log_file = base_dir / log_file
    return LoggingConfig(level=level, log_file=log_file)


__all__ = [
    "Config",
    "ConfigError",
    "DEFAULT_RETRY_LIMIT",
    "LoggingConfig",
    "default_config",
    "load_config",
    "normalize_root",
    "parse_config",
    "parse_strategy",
]
