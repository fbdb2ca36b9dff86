from __future__ import annotations

import threading

import pytest

from shimloader.context import ContextTracker
from shimloader.errors import ReentrancyError
from shimloader.types import ExecutionContext


def test_enter_and_exit() -> None:
    tracker = ContextTracker()
    assert tracker.current() is None

    context = tracker.enter("lodash", "/app/node_modules/lodash/index.py")

    assert tracker.current() == ExecutionContext("lodash", "/app/node_modules/lodash/index.py")
    assert context is tracker.current()
    tracker.exit()
    assert tracker.current() is None


def test_second_enter_is_reentrancy_error() -> None:
    tracker = ContextTracker()
    tracker.enter("/app/a.py", "/app/a.py")

    with pytest.raises(ReentrancyError, match="/app/a.py"):
        tracker.enter("/app/b.py", "/app/b.py")

    assert tracker.current().id == "/app/a.py"


def test_active_clears_slot_when_block_raises() -> None:
    tracker = ContextTracker()

    with pytest.raises(ValueError):
        with tracker.active("/app/a.py", "/app/a.py"):
            raise ValueError("boom")

    assert tracker.current() is None


def test_failed_enter_keeps_existing_context() -> None:
    tracker = ContextTracker()

    with tracker.active("/app/a.py", "/app/a.py"):
        with pytest.raises(ReentrancyError):
            with tracker.active("/app/b.py", "/app/b.py"):
                pass  # pragma: no cover
        assert tracker.current().address == "/app/a.py"


def test_slot_is_per_thread() -> None:
    tracker = ContextTracker()
    seen: list[ExecutionContext | None] = []
    tracker.enter("/app/a.py", "/app/a.py")

    worker = threading.Thread(target=lambda: seen.append(tracker.current()))
    worker.start()
    worker.join()

    assert seen == [None]
