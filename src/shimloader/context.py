"""Tracks which module's top-level code is running right now."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .errors import ReentrancyError
from .types import ExecutionContext


class ContextTracker:
    """Single-slot record of the executing module.

    The slot is thread-local. Under the default strategy every unit runs on
    the event-loop thread, so there is exactly one slot in use.
    """

    def __init__(self) -> None:
        self._local = threading.local()

    def enter(self, id: str, address: str) -> ExecutionContext:
        active = self.current()
        if active is not None:
            raise ReentrancyError(
                f"Cannot run '{id}' while '{active.id}' ({active.address}) is executing."
            )
        context = ExecutionContext(id=id, address=address)
        self._local.context = context
        return context

    def current(self) -> ExecutionContext | None:
        return getattr(self._local, "context", None)

    def exit(self) -> None:
        self._local.context = None

    @contextmanager
    def active(self, id: str, address: str) -> Iterator[ExecutionContext]:
        """Arm the tracker for the duration of the block, clearing it however it ends."""

        context = self.enter(id, address)
        try:
            yield context
        finally:
            self.exit()


__all__ = ["ContextTracker"]
