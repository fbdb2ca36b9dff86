from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from textwrap import dedent
from typing import Any

import pytest

from shimloader.errors import FetchError
from shimloader.loader import Loader

ROOT = "/app"


class MemoryFetcher:
    """Serves module sources from a dict and records every request."""

    def __init__(self, sources: Mapping[str, str]) -> None:
        self.sources = {address: dedent(text) for address, text in sources.items()}
        self.requests: list[str] = []

    async def fetch(self, address: str) -> str:
        self.requests.append(address)
        try:
            return self.sources[address]
        except KeyError as exc:
            raise FetchError(f"Module source not found: {address}", address=address) from exc

    async def aclose(self) -> None:
        return None


@pytest.fixture()
def make_loader() -> Callable[..., Loader]:
    def _make(sources: Mapping[str, str], **kwargs: Any) -> Loader:
        return Loader(ROOT, fetcher=MemoryFetcher(sources), **kwargs)

    return _make


@pytest.fixture()
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
