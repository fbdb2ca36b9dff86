"""Exception taxonomy shared by the loader components."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import BareSpecifier, ExecutionContext


class LoaderError(Exception):
    """Base class for every error surfaced by shimloader."""


class PathResolutionError(LoaderError):
    """Raised when a specifier cannot be normalised into an address."""


class DefinitionError(LoaderError):
    """Raised when a module misuses ``define()``."""


class DuplicateRegistration(DefinitionError):
    """Raised when ``define()`` is called twice during one execution attempt."""


class UnrecognizedSignature(DefinitionError):
    """Raised when a factory without explicit deps has unsupported parameter names."""


class MalformedDefinition(DefinitionError):
    """Raised when ``define()`` receives arguments outside ``[id,][deps,]factory``."""


class ReentrancyError(LoaderError):
    """Raised when an execution context is entered while another is active."""


class DuplicateSettlement(LoaderError):
    """Raised when a cache entry is settled a second time."""


class FetchError(LoaderError):
    """Raised when module source cannot be retrieved."""

    def __init__(self, message: str, *, address: str | None = None) -> None:
        super().__init__(message)
        self.address = address


class ManifestError(LoaderError):
    """Raised when a package manifest is missing or has no entry point."""


class ModuleExecutionError(LoaderError):
    """Raised when module code fails to compile or raises while running."""

    def __init__(self, message: str, *, address: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.address = address
        self.cause = cause


class RetryLimitExceeded(LoaderError):
    """Raised when a module is dispatched more often than the configured limit."""


class CircularDependency(LoaderError):
    """Raised by the suspending strategy when a dependency waits on its requester."""


class DependencyNotLoaded(LoaderError):
    """Raised by ``require()`` outside module execution for a module that is not loaded."""


class MissingDependency(BaseException):
    """Control signal raised by ``require()`` for a dependency that is not loaded yet.

    Derives from ``BaseException`` so legacy ``except Exception`` blocks do not
    swallow it. The loader always intercepts it.
    """

    def __init__(self, context: ExecutionContext | None, target: str | BareSpecifier) -> None:
        super().__init__(f"missing dependency {target!s}")
        self.context = context
        self.target = target


__all__ = [
    "CircularDependency",
    "DefinitionError",
    "DependencyNotLoaded",
    "DuplicateRegistration",
    "DuplicateSettlement",
    "FetchError",
    "LoaderError",
    "MalformedDefinition",
    "ManifestError",
    "MissingDependency",
    "ModuleExecutionError",
    "PathResolutionError",
    "ReentrancyError",
    "RetryLimitExceeded",
    "UnrecognizedSignature",
]
