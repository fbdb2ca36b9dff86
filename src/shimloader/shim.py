"""The ``exports``/``module``/``require``/``define`` surface seen by legacy modules.

Each dispatch gets a fresh :class:`DispatchScope` whose namespace is used as
the globals of the executed unit. After the unit finishes, the scope tells the
loader which convention the module used and what its export value is.
"""

from __future__ import annotations

import builtins
import inspect
from collections.abc import Callable, Mapping, Sized
from typing import Any, cast

from .cache import CacheEntry
from .context import ContextTracker
from .errors import DuplicateRegistration, MalformedDefinition, UnrecognizedSignature
from .types import BareSpecifier, CacheState, ExecutionContext, PendingDefinition

Target = str | BareSpecifier

EXPORTS = "exports"
REQUIRE = "require"
MODULE = "module"
SPECIAL_DEPENDENCIES = frozenset({EXPORTS, REQUIRE, MODULE})
RECOGNIZED_SIGNATURES: tuple[tuple[str, ...], ...] = (
    (REQUIRE,),
    (REQUIRE, EXPORTS, MODULE),
)

# jQuery and friends only register through define() when this flag is present.
AMD_FLAG: dict[str, bool] = {"jQuery": True}


def factory_dependencies(factory: Callable[..., Any]) -> tuple[str, ...]:
    """Infer dependencies from the factory's required positional parameters."""

    try:
        signature = inspect.signature(factory)
    except (TypeError, ValueError) as exc:
        raise UnrecognizedSignature(f"Cannot inspect define() factory {factory!r}.") from exc

    names = tuple(
        parameter.name
        for parameter in signature.parameters.values()
        if parameter.kind
        in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        and parameter.default is inspect.Parameter.empty
    )
    if not names:
        return ()
    if names not in RECOGNIZED_SIGNATURES:
        raise UnrecognizedSignature(
            "define() factory must take (require) or (require, exports, module), "
            f"got ({', '.join(names)})."
        )
    return names


def parse_define_args(args: tuple[Any, ...]) -> PendingDefinition:
    """Split ``define()`` arguments into ``[id,][deps,]factory``."""

    remaining = list(args)
    declared_id: str | None = None
    deps: tuple[str, ...] | None = None

    if remaining and isinstance(remaining[0], str):
        declared_id = remaining.pop(0)
    if remaining and isinstance(remaining[0], (list, tuple)):
        raw_deps = remaining.pop(0)
        if not all(isinstance(dep, str) for dep in raw_deps):
            raise MalformedDefinition("define() dependencies must be strings.")
        deps = tuple(raw_deps)
    if len(remaining) != 1 or not callable(remaining[0]):
        raise MalformedDefinition("define() expects arguments [id,][deps,]factory.")

    factory = remaining[0]
    if deps is None:
        deps = factory_dependencies(factory)
    return PendingDefinition(id=declared_id, deps=deps, factory=factory)


def has_entries(value: Any) -> bool:
    """Return False for ``None`` and empty containers, True for anything else.

    Containers are anything with a length: mappings, lists, tuples, strings.
    Scalars such as ``0`` and ``False`` are values.
    """

    if value is None:
        return False
    if isinstance(value, Sized):
        return len(value) > 0
    return True


class ShimSurface:
    """Builds dispatch scopes and implements ``require`` for the loader."""

    def __init__(
        self,
        *,
        tracker: ContextTracker,
        resolve_target: Callable[[str, str | None], Target],
        entry_for: Callable[[Target], CacheEntry | None],
        on_missing: Callable[[ExecutionContext | None, Target], Any],
        extra_globals: Mapping[str, Any] | None = None,
    ) -> None:
        self.tracker = tracker
        self._resolve_target = resolve_target
        self._entry_for = entry_for
        self._on_missing = on_missing
        self._extra_globals = dict(extra_globals or {})

    def require(self, specifier: str, *, owner: ExecutionContext | None = None) -> Any:
        """Return a loaded dependency or hand the miss to the loader."""

        context = self.tracker.current() or owner
        target = self._resolve_target(specifier, context.address if context else None)
        entry = self._entry_for(target)
        if entry is not None:
            if entry.state is CacheState.RESOLVED:
                return entry.value
            if entry.state is CacheState.FAILED:
                raise cast(BaseException, entry.error)
        return self._on_missing(context, target)

    def new_scope(self, context: ExecutionContext) -> DispatchScope:
        return DispatchScope(self, context)


class DispatchScope:
    """Per-dispatch state: output slot, pending definition and namespace."""

    def __init__(self, surface: ShimSurface, context: ExecutionContext) -> None:
        self.context = context
        self.definition: PendingDefinition | None = None
        self.module = ModuleObject(self)
        self.define = Define(self)

        def require(specifier: str) -> Any:
            return surface.require(specifier, owner=context)

        self.require = require
        self.namespace: dict[str, Any] = {
            **surface._extra_globals,
            "__builtins__": builtins,
            "__name__": context.id,
            "__file__": context.address,
            EXPORTS: {},
            MODULE: self.module,
            REQUIRE: require,
            "define": self.define,
        }

    @property
    def exports(self) -> Any:
        return self.namespace.setdefault(EXPORTS, {})

    @exports.setter
    def exports(self, value: Any) -> None:
        self.namespace[EXPORTS] = value

    def register(self, args: tuple[Any, ...]) -> PendingDefinition:
        if self.definition is not None:
            raise DuplicateRegistration(
                f"define() called more than once while running {self.context.address}."
            )
        self.definition = parse_define_args(args)
        return self.definition

    def special_dependency(self, name: str, passed_exports: dict[str, Any]) -> Any:
        if name == EXPORTS:
            return passed_exports
        if name == REQUIRE:
            return self.require
        return self.module

    def factory_result(self, returned: Any, passed_exports: dict[str, Any]) -> Any:
        """Pick the export value of a factory module."""

        if has_entries(returned):
            return returned
        slot = self.namespace.get(EXPORTS)
        if has_entries(slot):
            return slot
        return passed_exports


class ModuleObject:
    """The ``module`` global; ``module.exports`` aliases the ``exports`` slot."""

    def __init__(self, scope: DispatchScope) -> None:
        self._scope = scope
        self.id = scope.context.id

    @property
    def exports(self) -> Any:
        return self._scope.exports

    @exports.setter
    def exports(self, value: Any) -> None:
        self._scope.exports = value

    def __repr__(self) -> str:
        return f"<module {self.id!r}>"


class Define:
    """The ``define`` global, carrying the ``amd`` capability flag."""

    def __init__(self, scope: DispatchScope) -> None:
        self._scope = scope
        self.amd = dict(AMD_FLAG)

    def __call__(self, *args: Any) -> None:
        self._scope.register(args)


__all__ = [
    "AMD_FLAG",
    "DispatchScope",
    "ModuleObject",
    "RECOGNIZED_SIGNATURES",
    "SPECIAL_DEPENDENCIES",
    "ShimSurface",
    "factory_dependencies",
    "has_entries",
    "parse_define_args",
]
