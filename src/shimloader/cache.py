"""Process-lifetime memoisation of module values keyed by canonical address."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, cast

from .errors import DuplicateSettlement
from .types import CacheState

LOGGER = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Eventual value of one canonical address."""

    address: str
    state: CacheState = CacheState.PENDING
    value: Any = None
    error: BaseException | None = None
    _waiters: list[asyncio.Future[Any]] = field(default_factory=list, repr=False)

    @property
    def settled(self) -> bool:
        return self.state is not CacheState.PENDING

    async def wait(self) -> Any:
        """Suspend until the entry settles, then return its value or raise its error."""

        if self.state is CacheState.RESOLVED:
            return self.value
        if self.state is CacheState.FAILED:
            raise cast(BaseException, self.error)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return await waiter

    def _settle(self, value: Any, error: BaseException | None) -> None:
        if self.settled:
            raise DuplicateSettlement(f"Cache entry for {self.address} is already {self.state.value}.")
        if error is not None:
            self.state = CacheState.FAILED
            self.error = error
        else:
            self.state = CacheState.RESOLVED
            self.value = value
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(value)


class ModuleCache:
    """Keyed store of cache entries; the single source of truth for availability."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def get(self, address: str) -> CacheEntry:
        """Return the entry for ``address``, creating a pending one if absent."""

        entry = self._entries.get(address)
        if entry is None:
            entry = CacheEntry(address)
            self._entries[address] = entry
        return entry

    def peek(self, address: str) -> CacheEntry | None:
        return self._entries.get(address)

    def settle(
        self,
        address: str,
        value: Any = None,
        *,
        error: BaseException | None = None,
    ) -> None:
        """Transition a pending entry to resolved or failed, waking every waiter."""

        entry = self.get(address)
        entry._settle(value, error)
        LOGGER.debug("Settled %s as %s", address, entry.state.value)

    async def wait(self, address: str) -> Any:
        return await self.get(address).wait()

    def addresses(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries.values()))


__all__ = ["CacheEntry", "ModuleCache"]
