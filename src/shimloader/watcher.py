"""Filesystem watcher that reports changes to module sources under a root."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

LOGGER = logging.getLogger(__name__)


class SourceWatcher:
    """Watch a directory tree and call back when a source file changes."""

    def __init__(
        self,
        root: Path,
        suffixes: Iterable[str],
        *,
        debounce_seconds: float = 0.2,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        self._root = root.expanduser()
        self._suffixes = frozenset(suffix.lower() for suffix in suffixes if suffix)
        self._observer_factory = observer_factory or Observer
        self._observer: BaseObserver | None = None
        self._callbacks: list[Callable[[Path], None]] = []
        self._debounce = max(0.0, debounce_seconds)
        self._lock = threading.Lock()

    def on_change(self, callback: Callable[[Path], None]) -> None:
        """Register callback invoked with the path of a changed source file."""

        self._callbacks.append(callback)

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            observer = self._observer_factory()
            handler = _SourceEventHandler(
                suffixes=self._suffixes,
                callback=self._emit,
                debounce_seconds=self._debounce,
            )
            observer.schedule(handler, str(self._root), recursive=True)
            observer.start()
            self._observer = observer

    def stop(self) -> None:
        """Stop watching and wait for the observer thread to finish."""

        with self._lock:
            observer = self._observer
            if observer is None:
                return
            observer.stop()
            try:
                observer.join(timeout=5)
            except RuntimeError:  # pragma: no cover - watchdog internals
                LOGGER.warning("Failed to join source observer thread")
            self._observer = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def _emit(self, path: Path) -> None:
        for callback in list(self._callbacks):
            try:
                callback(path)
            except Exception:  # pragma: no cover
                LOGGER.exception("Change callback failed for path %s", path)


class _SourceEventHandler(FileSystemEventHandler):
    def __init__(
        self,
        *,
        suffixes: frozenset[str],
        callback: Callable[[Path], None],
        debounce_seconds: float,
    ) -> None:
        super().__init__()
        self._suffixes = suffixes
        self._callback = callback
        self._debounce_seconds = debounce_seconds
        self._recent: dict[Path, float] = {}
        self._recent_lock = threading.Lock()

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_path(_event_path(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_path(_event_path(event.src_path))

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            return
        self._handle_path(_event_path(event.dest_path))

    def _handle_path(self, path: Path) -> None:
        if self._suffixes and path.suffix.lower() not in self._suffixes:
            return
        if not self._should_emit(path):
            return
        self._callback(path)

    def _should_emit(self, path: Path) -> bool:
        if self._debounce_seconds <= 0:
            return True
        now = time.monotonic()
        with self._recent_lock:
            last = self._recent.get(path)
            if last is not None and now - last < self._debounce_seconds:
                return False
            self._recent[path] = now
            threshold = now - max(self._debounce_seconds * 4, 1.0)
            for candidate in [item for item, ts in self._recent.items() if ts < threshold]:
                self._recent.pop(candidate, None)
            return True


def _event_path(value: str | bytes) -> Path:
    if isinstance(value, bytes):
        return Path(os.fsdecode(value))
    return Path(value)


__all__ = ["SourceWatcher"]
