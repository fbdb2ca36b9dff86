"""The code-loading primitive: fetch, compile and run one unit of module source."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Callable, Coroutine
from types import CodeType
from typing import Any

from .context import ContextTracker
from .errors import LoaderError, MissingDependency, ModuleExecutionError
from .fetch import Fetcher
from .shim import DispatchScope
from .types import Completed, DispatchOutcome, Failed, Missing, Strategy

LOGGER = logging.getLogger(__name__)
UNIT_SEPARATOR = "#"
DISPATCH_HISTORY = 256


def unit_name(address: str, serial: int) -> str:
    """Give a dispatch its own specifier so the host runs it again."""

    return f"{address}{UNIT_SEPARATOR}{serial}"


def unit_address(unit: str) -> str:
    address, separator, _ = unit.rpartition(UNIT_SEPARATOR)
    return address if separator else unit


class InlineRunner:
    """Run units directly on the event-loop thread."""

    async def run(self, work: Callable[[], DispatchOutcome]) -> DispatchOutcome:
        return work()

    def block_on(self, coroutine: Coroutine[Any, Any, Any]) -> Any:
        coroutine.close()
        raise RuntimeError("The inline runner cannot block on a dependency.")


class ThreadRunner:
    """Run each unit on its own thread so ``require`` can block mid-execution.

    Only the thread holding the execution lock runs module code; a thread
    blocked on a dependency releases the lock until the dependency settles.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    async def run(self, work: Callable[[], DispatchOutcome]) -> DispatchOutcome:
        loop = asyncio.get_running_loop()
        self._loop = loop
        future: asyncio.Future[DispatchOutcome] = loop.create_future()

        def _target() -> None:
            with self._lock:
                try:
                    outcome = work()
                except Exception as exc:  # pragma: no cover - work() reports its own errors
                    outcome = Failed(exc)
            loop.call_soon_threadsafe(_resolve, future, outcome)

        threading.Thread(target=_target, name="shimloader-unit", daemon=True).start()
        return await future

    def block_on(self, coroutine: Coroutine[Any, Any, Any]) -> Any:
        """Wait for ``coroutine`` on the event loop from inside a unit thread."""

        if self._loop is None:
            coroutine.close()
            raise RuntimeError("No event loop is driving the thread runner.")
        pending = asyncio.run_coroutine_threadsafe(coroutine, self._loop)
        self._lock.release()
        try:
            return pending.result()
        finally:
            self._lock.acquire()


def _resolve(future: asyncio.Future[DispatchOutcome], outcome: DispatchOutcome) -> None:
    if not future.done():
        future.set_result(outcome)


class ScriptHost:
    """Fetches, compiles and executes units, one at a time, to completion."""

    def __init__(
        self,
        fetcher: Fetcher,
        tracker: ContextTracker,
        *,
        strategy: Strategy = Strategy.RERUN,
    ) -> None:
        self._fetcher = fetcher
        self._tracker = tracker
        self.strategy = strategy
        self._runner: InlineRunner | ThreadRunner = (
            ThreadRunner() if strategy is Strategy.SUSPEND else InlineRunner()
        )
        self._code: dict[str, CodeType] = {}
        self._executed: set[str] = set()
        self.dispatch_count = 0
        self.dispatch_log: deque[str] = deque(maxlen=DISPATCH_HISTORY)

    async def dispatch(self, unit: str, scope: DispatchScope) -> DispatchOutcome:
        """Run ``unit`` in ``scope``.

        A unit specifier that already ran is a no-op: ``scope`` comes back
        untouched. Only the most recent units are kept in ``dispatch_log``.
        """

        if unit in self._executed:
            LOGGER.debug("Unit %s already executed, not running it again", unit)
            return Completed(scope)

        try:
            code = await self._compiled(unit_address(unit))
        except LoaderError as exc:
            return Failed(exc)

        self._executed.add(unit)
        self.dispatch_count += 1
        self.dispatch_log.append(unit)
        LOGGER.debug("Dispatching %s as '%s'", unit, scope.context.id)
        return await self._runner.run(
            lambda: self._guarded(scope, lambda: exec(code, scope.namespace))
        )

    async def invoke(
        self,
        scope: DispatchScope,
        factory: Callable[..., Any],
        args: list[Any],
    ) -> DispatchOutcome:
        """Call a module's ``define()`` factory inside the module's context."""

        return await self._runner.run(lambda: self._guarded(scope, lambda: factory(*args)))

    def block_on(self, coroutine: Coroutine[Any, Any, Any]) -> Any:
        return self._runner.block_on(coroutine)

    async def aclose(self) -> None:
        await self._fetcher.aclose()

    async def _compiled(self, address: str) -> CodeType:
        code = self._code.get(address)
        if code is not None:
            return code
        source = await self._fetcher.fetch(address)
        try:
            code = compile(source, address, "exec")
        except SyntaxError as exc:
            raise ModuleExecutionError(
                f"Syntax error in {address}: {exc.msg} (line {exc.lineno})",
                address=address,
                cause=exc,
            ) from exc
        self._code[address] = code
        return code

    def _guarded(self, scope: DispatchScope, work: Callable[[], Any]) -> DispatchOutcome:
        context = scope.context
        try:
            with self._tracker.active(context.id, context.address):
                value = work()
        except MissingDependency as signal:
            return Missing(signal)
        except LoaderError as exc:
            return Failed(exc)
        except Exception as exc:
            error = ModuleExecutionError(
                f"Module {context.address} raised {type(exc).__name__}: {exc}",
                address=context.address,
                cause=exc,
            )
            error.__cause__ = exc
            return Failed(error)
        return Completed(scope, value)


__all__ = ["InlineRunner", "ScriptHost", "ThreadRunner", "unit_address", "unit_name"]
