"""Core immutable data structures used throughout shimloader."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .errors import MissingDependency
    from .shim import DispatchScope


class CacheState(str, Enum):
    """Lifecycle states of a cache entry."""

    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


class Strategy(str, Enum):
    """How the engine handles a dependency discovered mid-execution."""

    RERUN = "rerun"
    SUSPEND = "suspend"


@dataclass(frozen=True)
class BareSpecifier:
    """A package name that needs a manifest lookup before it has an address."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ExecutionContext:
    """The module whose top-level code is currently running."""

    id: str
    address: str


@dataclass(frozen=True)
class PendingDefinition:
    """A ``define()`` registration captured during one execution attempt."""

    id: str | None
    deps: tuple[str, ...]
    factory: Callable[..., Any]


@dataclass(frozen=True)
class Completed:
    """The unit ran to completion."""

    scope: DispatchScope
    value: Any = None


@dataclass(frozen=True)
class Missing:
    """The unit aborted on a dependency that is not available yet."""

    signal: MissingDependency


@dataclass(frozen=True)
class Failed:
    """The unit could not be fetched, compiled or run."""

    error: BaseException


DispatchOutcome = Completed | Missing | Failed


__all__ = [
    "BareSpecifier",
    "CacheState",
    "Completed",
    "DispatchOutcome",
    "ExecutionContext",
    "Failed",
    "Missing",
    "PendingDefinition",
    "Strategy",
]
