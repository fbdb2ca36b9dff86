"""Sources of raw module text: local files and HTTP."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

import httpx

from .errors import FetchError
from .paths import is_url

LOGGER = logging.getLogger(__name__)
DEFAULT_HTTP_TIMEOUT = 30.0


class Fetcher(Protocol):
    """Anything able to turn an address into source text."""

    async def fetch(self, address: str) -> str: ...

    async def aclose(self) -> None: ...


class FileFetcher:
    """Read module source from the local filesystem."""

    async def fetch(self, address: str) -> str:
        path = Path(address)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as exc:
            raise FetchError(f"Module source not found: {address}", address=address) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise FetchError(f"Failed to read {address}: {exc}", address=address) from exc

    async def aclose(self) -> None:
        return None


class HttpFetcher:
    """Fetch module source over HTTP(S) with a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def fetch(self, address: str) -> str:
        client = self._ensure_client()
        LOGGER.debug("GET %s", address)
        try:
            response = await client.get(address)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise FetchError(f"Timed out fetching {address}", address=address) from exc
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                f"HTTP {exc.response.status_code} fetching {address}", address=address
            ) from exc
        except httpx.RequestError as exc:
            raise FetchError(f"Network error fetching {address}: {exc}", address=address) from exc
        return response.text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client


class RoutingFetcher:
    """Send URL addresses to HTTP and everything else to the filesystem."""

    def __init__(
        self,
        *,
        files: Fetcher | None = None,
        http: Fetcher | None = None,
    ) -> None:
        self._files = files or FileFetcher()
        self._http = http or HttpFetcher()

    async def fetch(self, address: str) -> str:
        if is_url(address):
            return await self._http.fetch(address)
        return await self._files.fetch(address)

    async def aclose(self) -> None:
        await self._http.aclose()
        await self._files.aclose()


def build_fetcher(timeout: float = DEFAULT_HTTP_TIMEOUT) -> RoutingFetcher:
    return RoutingFetcher(http=HttpFetcher(timeout=timeout))


__all__ = ["Fetcher", "FileFetcher", "HttpFetcher", "RoutingFetcher", "build_fetcher"]
