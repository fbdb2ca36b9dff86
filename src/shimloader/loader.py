"""On-demand, cached loading of legacy modules with abort-and-retry execution.

A module runs to completion or not at all. When its top-level code
``require()``s something that is not loaded yet, the dispatch aborts with a
:class:`~shimloader.errors.MissingDependency` signal; the loader loads that
dependency and then runs the module again from the top. Module top-level code
is therefore expected to be safe to repeat. ``Strategy.SUSPEND`` avoids the
repetition by running units on worker threads that block inside ``require``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Mapping
from typing import Any

from .cache import CacheEntry, ModuleCache
from .config import DEFAULT_ENTRY_FIELD, DEFAULT_MANIFEST_NAME, DEFAULT_RETRY_LIMIT, Config
from .context import ContextTracker
from .errors import (
    CircularDependency,
    DependencyNotLoaded,
    DuplicateRegistration,
    FetchError,
    LoaderError,
    MalformedDefinition,
    ManifestError,
    MissingDependency,
    RetryLimitExceeded,
)
from .fetch import Fetcher, build_fetcher
from .host import ScriptHost, unit_name
from .paths import DEFAULT_EXTENSION, DEFAULT_MODULES_DIR, resolve
from .shim import SPECIAL_DEPENDENCIES, DispatchScope, ShimSurface
from .types import (
    BareSpecifier,
    CacheState,
    Completed,
    DispatchOutcome,
    ExecutionContext,
    Failed,
    Missing,
    PendingDefinition,
    Strategy,
)

LOGGER = logging.getLogger(__name__)

Target = str | BareSpecifier
REGISTERED_PREFIX = "registered:"


class Loader:
    """Resolve, fetch, run and memoise legacy modules."""

    def __init__(
        self,
        root: str,
        *,
        fetcher: Fetcher | None = None,
        modules_dir: str = DEFAULT_MODULES_DIR,
        manifest_name: str = DEFAULT_MANIFEST_NAME,
        entry_field: str = DEFAULT_ENTRY_FIELD,
        default_extension: str = DEFAULT_EXTENSION,
        retry_limit: int | None = DEFAULT_RETRY_LIMIT,
        strategy: Strategy = Strategy.RERUN,
        extra_globals: Mapping[str, Any] | None = None,
    ) -> None:
        self.root = root
        self.modules_dir = modules_dir
        self.manifest_name = manifest_name
        self.entry_field = entry_field
        self.default_extension = default_extension
        self.retry_limit = retry_limit
        self.strategy = strategy
        self.cache = ModuleCache()
        self.tracker = ContextTracker()
        self._fetcher = fetcher or build_fetcher()
        self.host = ScriptHost(self._fetcher, self.tracker, strategy=strategy)
        self.surface = ShimSurface(
            tracker=self.tracker,
            resolve_target=self.resolve,
            entry_for=self._entry_for,
            on_missing=self._on_missing,
            extra_globals=extra_globals,
        )
        self._serial = itertools.count(1)
        self._packages: dict[str, asyncio.Future[str]] = {}
        self._package_addresses: dict[str, str] = {}
        self._waiting: dict[str, set[str]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> Loader:
        """Build a loader from ``config``; keyword arguments override its values."""

        options: dict[str, Any] = {
            "modules_dir": config.modules_dir,
            "manifest_name": config.manifest_name,
            "entry_field": config.entry_field,
            "default_extension": config.default_extension,
            "retry_limit": config.retry_limit,
            "strategy": config.strategy,
        }
        options.update(kwargs)
        if options.get("fetcher") is None:
            options["fetcher"] = build_fetcher(config.http_timeout)
        return cls(config.root, **options)

    async def __aenter__(self) -> Loader:
        return self

    async def __aexit__(self, _exc_type, _exc, _tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.host.aclose()

    def resolve(self, specifier: str, current_address: str | None = None) -> Target:
        """Resolve ``specifier`` relative to ``current_address`` (or the root)."""

        return resolve(
            specifier,
            current_address,
            root=self.root,
            modules_dir=self.modules_dir,
            default_extension=self.default_extension,
        )

    def register(self, id: str, value: Any) -> Any:
        """Publish an already-built value under the bare package name ``id``.

        Registered values satisfy ``require(id)``, ``define`` dependencies and
        ``load(id)`` without a manifest lookup. Names cannot be registered twice.
        """

        if not id or "/" in id or id in SPECIAL_DEPENDENCIES:
            raise MalformedDefinition(f"Cannot register a module under '{id}'.")
        if id in self._package_addresses or id in self._packages:
            raise DuplicateRegistration(f"Module '{id}' is already registered.")
        address = f"{REGISTERED_PREFIX}{id}"
        self.cache.settle(address, value)
        self._package_addresses[id] = address
        LOGGER.debug("Registered '%s'", id)
        return value

    async def load(self, specifier: str) -> Any:
        """Load ``specifier`` and return its export value.

        Resolution errors are raised before anything is scheduled. Every caller
        asking for the same address shares one load and sees the same value or
        error.
        """

        return await self._load_target(self.resolve(specifier))

    async def _load_target(self, target: Target) -> Any:
        if isinstance(target, BareSpecifier):
            address = await self._package_address(target.name)
            return await self._load_address(address, id=target.name)
        return await self._load_address(target, id=target)

    async def _load_address(self, address: str, *, id: str) -> Any:
        entry = self.cache.peek(address)
        if entry is None:
            entry = self.cache.get(address)
            task = asyncio.create_task(self._settle(id, address), name=f"shimloader:{address}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return await entry.wait()

    async def _settle(self, id: str, address: str) -> None:
        try:
            value = await self._execute(id, address)
        except LoaderError as exc:
            LOGGER.warning("Failed to load %s: %s", address, exc)
            self.cache.settle(address, error=exc)
        except Exception as exc:
            LOGGER.exception("Unexpected failure while loading %s", address)
            self.cache.settle(address, error=exc)
        else:
            self.cache.settle(address, value)

    async def _execute(self, id: str, address: str) -> Any:
        """Dispatch until one run completes without discovering a missing dependency."""

        attempts = 0
        stalled = 0
        while True:
            attempts += 1
            stalled += 1
            if self.retry_limit is not None and stalled > self.retry_limit:
                raise RetryLimitExceeded(
                    f"Gave up on {address} after {self.retry_limit} dispatches without "
                    "loading anything new; it may depend on itself."
                )

            scope = self.surface.new_scope(ExecutionContext(id=id, address=address))
            outcome = await self.host.dispatch(unit_name(address, next(self._serial)), scope)
            if isinstance(outcome, Completed) and scope.definition is not None:
                outcome = await self._run_factory(scope, scope.definition)

            if isinstance(outcome, Missing):
                if await self._await_dependency(address, outcome.signal.target):
                    stalled = 0
                LOGGER.debug("Re-running %s (attempt %d)", address, attempts + 1)
                continue
            if isinstance(outcome, Failed):
                raise outcome.error
            if scope.definition is None:
                return scope.exports
            return outcome.value

    async def _run_factory(
        self,
        scope: DispatchScope,
        definition: PendingDefinition,
    ) -> DispatchOutcome:
        """Load a factory module's dependencies, then call the factory."""

        context = scope.context
        if definition.id and "/" not in definition.id and definition.id != context.id:
            self._package_addresses.setdefault(definition.id, context.address)

        passed_exports: dict[str, Any] = {}
        args: list[Any] = []
        pending: list[tuple[int, str, str]] = []
        for index, dep in enumerate(definition.deps):
            if dep in SPECIAL_DEPENDENCIES:
                args.append(scope.special_dependency(dep, passed_exports))
                continue
            target = self.resolve(dep, context.address)
            args.append(None)
            try:
                address = await self._address_for(target)
            except LoaderError as exc:
                return Failed(exc)
            pending.append((index, address, str(target)))

        for _, address, _ in pending:
            if self._would_deadlock(context.address, address):
                if self.strategy is Strategy.SUSPEND:
                    return Failed(_circular(context.address, address))
                return Missing(MissingDependency(context, address))

        waiting = self._waiting.setdefault(context.address, set())
        waiting.update(address for _, address, _ in pending)
        try:
            values = await asyncio.gather(
                *(self._load_address(address, id=id) for _, address, id in pending)
            )
        except Exception as exc:
            return Failed(exc)
        finally:
            waiting.difference_update(address for _, address, _ in pending)

        for (index, _, _), value in zip(pending, values):
            args[index] = value

        outcome = await self.host.invoke(scope, definition.factory, args)
        if isinstance(outcome, Completed):
            return Completed(scope, scope.factory_result(outcome.value, passed_exports))
        return outcome

    async def _await_dependency(self, requester: str, target: Target) -> bool:
        """Wait for ``target`` to settle, whatever the result.

        A failed dependency is reported when the requester runs again and its
        ``require()`` re-raises the stored error. Returns False when nothing new
        settled, so the next dispatch counts against ``retry_limit``.
        """

        try:
            address = await self._address_for(target)
        except LoaderError as exc:
            LOGGER.debug("Lookup of %s failed for %s: %s", target, requester, exc)
            return True

        if self._would_deadlock(requester, address):
            LOGGER.warning("%s waits on %s which waits on it; re-running it", requester, address)
            await asyncio.sleep(0)
            return False

        entry = self.cache.peek(address)
        progressed = entry is None or not entry.settled

        waiting = self._waiting.setdefault(requester, set())
        waiting.add(address)
        try:
            await self._load_address(address, id=_target_id(target, address))
        except Exception as exc:
            LOGGER.debug("Dependency %s of %s failed: %s", address, requester, exc)
        finally:
            waiting.discard(address)
        return progressed

    def _on_missing(self, context: ExecutionContext | None, target: Target) -> Any:
        if context is None or self.tracker.current() is None:
            # Called after the requesting module finished, e.g. from an exported function.
            raise DependencyNotLoaded(
                f"{target} is not loaded; require() it from module top level or load() it first."
            )
        if self.strategy is Strategy.RERUN:
            raise MissingDependency(context, target)
        return self.host.block_on(self._suspend_for(context.address, target))

    async def _suspend_for(self, requester: str, target: Target) -> Any:
        address = await self._address_for(target)
        if self._would_deadlock(requester, address):
            raise _circular(requester, address)
        waiting = self._waiting.setdefault(requester, set())
        waiting.add(address)
        try:
            return await self._load_address(address, id=_target_id(target, address))
        finally:
            waiting.discard(address)

    def _would_deadlock(self, requester: str, address: str) -> bool:
        entry = self.cache.peek(address)
        if entry is not None and entry.settled:
            return False
        stack = [address]
        seen: set[str] = set()
        while stack:
            current = stack.pop()
            if current == requester:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._waiting.get(current, ()))
        return False

    def _entry_for(self, target: Target) -> CacheEntry | None:
        if isinstance(target, str):
            return self.cache.peek(target)
        address = self._package_addresses.get(target.name)
        if address is not None:
            return self.cache.peek(address)
        lookup = self._packages.get(target.name)
        if lookup is not None and lookup.done() and lookup.exception() is not None:
            return CacheEntry(target.name, state=CacheState.FAILED, error=lookup.exception())
        return None

    async def _address_for(self, target: Target) -> str:
        if isinstance(target, str):
            return target
        return await self._package_address(target.name)

    async def _package_address(self, name: str) -> str:
        """Map a bare package name to the address of its entry point."""

        known = self._package_addresses.get(name)
        if known is not None:
            return known
        lookup = self._packages.get(name)
        if lookup is None:
            lookup = asyncio.ensure_future(self._read_manifest(name))
            self._packages[name] = lookup
        address = await asyncio.shield(lookup)
        self._package_addresses.setdefault(name, address)
        return address

    async def _read_manifest(self, name: str) -> str:
        manifest_address = self._package_file(name, self.manifest_name)
        try:
            text = await self._fetcher.fetch(manifest_address)
        except FetchError as exc:
            raise ManifestError(f"No manifest for package '{name}' at {manifest_address}.") from exc
        try:
            manifest = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ManifestError(f"Manifest {manifest_address} is not valid JSON: {exc}") from exc

        entry_point = manifest.get(self.entry_field) if isinstance(manifest, dict) else None
        if not isinstance(entry_point, str) or not entry_point.strip():
            raise ManifestError(
                f"Manifest {manifest_address} declares no '{self.entry_field}' entry point."
            )
        address = self._package_file(name, entry_point.strip())
        LOGGER.debug("Package '%s' resolves to %s", name, address)
        return address

    def _package_file(self, name: str, relative: str) -> str:
        target = self.resolve(f"./{self.modules_dir}/{name}/{relative}")
        if isinstance(target, BareSpecifier):
            raise ManifestError(f"Cannot locate '{relative}' inside package '{name}'.")
        return target


def _target_id(target: Target, address: str) -> str:
    return target.name if isinstance(target, BareSpecifier) else address


def _circular(requester: str, address: str) -> CircularDependency:
    return CircularDependency(f"{requester} and {address} depend on each other.")


__all__ = ["Loader"]
