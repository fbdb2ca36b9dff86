"""shimloader package initialisation."""

from importlib import metadata

from .cache import CacheEntry, ModuleCache
from .config import Config, ConfigError, load_config
from .errors import LoaderError
from .loader import Loader
from .types import BareSpecifier, CacheState, Strategy


def _discover_version() -> str:
    """Return the installed package version, falling back to dev marker."""
    try:
        return metadata.version("shimloader")
    except metadata.PackageNotFoundError:  # pragma: no cover - occurs in editable installs
        return "0.0.0"


__all__ = [
    "BareSpecifier",
    "CacheEntry",
    "CacheState",
    "Config",
    "ConfigError",
    "Loader",
    "LoaderError",
    "ModuleCache",
    "Strategy",
    "__version__",
    "load_config",
]
__version__ = _discover_version()
