from __future__ import annotations

import asyncio
from typing import Any

from shimloader.context import ContextTracker
from shimloader.errors import FetchError, MissingDependency, ModuleExecutionError
from shimloader.host import DISPATCH_HISTORY, ScriptHost, unit_address, unit_name
from shimloader.paths import resolve
from shimloader.shim import DispatchScope, ShimSurface
from shimloader.types import Completed, ExecutionContext, Failed, Missing

from tests.unit.conftest import MemoryFetcher


def _setup(sources: dict[str, str]) -> tuple[ScriptHost, ShimSurface, MemoryFetcher]:
    tracker = ContextTracker()
    fetcher = MemoryFetcher(sources)

    def on_missing(context: ExecutionContext | None, target: Any) -> Any:
        raise MissingDependency(context, target)

    surface = ShimSurface(
        tracker=tracker,
        resolve_target=lambda specifier, current: resolve(specifier, current, root="/app"),
        entry_for=lambda target: None,
        on_missing=on_missing,
    )
    return ScriptHost(fetcher, tracker), surface, fetcher


def _scope(surface: ShimSurface, address: str) -> DispatchScope:
    return surface.new_scope(ExecutionContext(address, address))


def test_unit_names_round_trip() -> None:
    assert unit_name("/app/a.py", 3) == "/app/a.py#3"
    assert unit_address("/app/a.py#3") == "/app/a.py"
    assert unit_address("/app/a.py") == "/app/a.py"


def test_dispatch_runs_unit_and_clears_context() -> None:
    host, surface, _ = _setup({"/app/a.py": "exports['seen'] = __name__\n"})
    scope = _scope(surface, "/app/a.py")

    outcome = asyncio.run(host.dispatch("/app/a.py#1", scope))

    assert isinstance(outcome, Completed)
    assert scope.exports == {"seen": "/app/a.py"}
    assert surface.tracker.current() is None
    assert list(host.dispatch_log) == ["/app/a.py#1"]


def test_same_unit_specifier_runs_once() -> None:
    host, surface, fetcher = _setup({"/app/a.py": "counter.append(1)\n"})
    counter: list[int] = []

    async def scenario() -> list[Any]:
        outcomes = []
        for unit in ("/app/a.py#1", "/app/a.py#1", "/app/a.py#2"):
            scope = _scope(surface, "/app/a.py")
            scope.namespace["counter"] = counter
            outcomes.append(await host.dispatch(unit, scope))
        return outcomes

    outcomes = asyncio.run(scenario())

    assert counter == [1, 1]
    assert all(isinstance(outcome, Completed) for outcome in outcomes)
    assert host.dispatch_count == 2
    assert list(host.dispatch_log) == ["/app/a.py#1", "/app/a.py#2"]
    assert fetcher.requests == ["/app/a.py"]


def test_missing_dependency_becomes_missing_outcome() -> None:
    host, surface, _ = _setup({"/app/a.py": "require('./b')\n"})

    outcome = asyncio.run(host.dispatch("/app/a.py#1", _scope(surface, "/app/a.py")))

    assert isinstance(outcome, Missing)
    assert outcome.signal.target == "/app/b.py"
    assert outcome.signal.context.address == "/app/a.py"
    assert surface.tracker.current() is None


def test_runtime_error_is_wrapped() -> None:
    host, surface, _ = _setup({"/app/a.py": "raise KeyError('nope')\n"})

    outcome = asyncio.run(host.dispatch("/app/a.py#1", _scope(surface, "/app/a.py")))

    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, ModuleExecutionError)
    assert isinstance(outcome.error.cause, KeyError)
    assert outcome.error.address == "/app/a.py"


def test_syntax_error_fails_without_running() -> None:
    host, surface, _ = _setup({"/app/a.py": "def broken(:\n"})

    outcome = asyncio.run(host.dispatch("/app/a.py#1", _scope(surface, "/app/a.py")))

    assert isinstance(outcome, Failed)
    assert "Syntax error" in str(outcome.error)
    assert list(host.dispatch_log) == []


def test_fetch_failure_is_reported() -> None:
    host, surface, _ = _setup({})

    outcome = asyncio.run(host.dispatch("/app/a.py#1", _scope(surface, "/app/a.py")))

    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, FetchError)


def test_invoke_calls_factory_inside_context() -> None:
    host, surface, _ = _setup({})
    scope = _scope(surface, "/app/a.py")
    seen: list[Any] = []

    def factory(value: int) -> int:
        seen.append(surface.tracker.current())
        return value * 2

    outcome = asyncio.run(host.invoke(scope, factory, [21]))

    assert isinstance(outcome, Completed)
    assert outcome.value == 42
    assert seen == [scope.context]



def test_dispatch_history_is_bounded() -> None:
    host, surface, _ = _setup({"/app/a.py": "exports['n'] = 1\n"})
    total = DISPATCH_HISTORY + 10

    async def scenario() -> None:
        for serial in range(1, total + 1):
            await host.dispatch(unit_name("/app/a.py", serial), _scope(surface, "/app/a.py"))

    asyncio.run(scenario())

    assert host.dispatch_count == total
    assert len(host.dispatch_log) == DISPATCH_HISTORY
    assert host.dispatch_log[-1] == f"/app/a.py#{total}"
