"""Platform cache sweeper interfaces.

Each capability returns an explicit "unsupported" value (``None`` or ``False``)
when the platform lacks it. Raising means the capability exists and failed.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from sensorreset.core.model import PlatformCacheEntry

KeyPredicate = Callable[[str], bool]


class PairingCache(Protocol):
    async def list_cached_pairings(self) -> list[PlatformCacheEntry] | None: ...

    async def disconnect_if_live(self, entry: PlatformCacheEntry) -> bool: ...

    async def forget_if_supported(self, entry: PlatformCacheEntry) -> bool: ...


class StateStore(Protocol):
    async def purge_matching_persisted_keys(self, predicate: KeyPredicate) -> int | None: ...

    async def purge_structured_caches(self) -> int | None: ...

    async def list_structured_databases(self) -> list[str] | None: ...

    async def delete_database(self, name: str) -> bool: ...


class PlatformSweeper(PairingCache, StateStore, Protocol):
    """Everything the orchestrator may ask of the platform during a sweep."""


class NullPlatformSweeper:
    """Sweeper for platforms that expose none of the optional capabilities."""

    async def list_cached_pairings(self) -> list[PlatformCacheEntry] | None:
        return None

    async def disconnect_if_live(self, entry: PlatformCacheEntry) -> bool:
        return False

    async def forget_if_supported(self, entry: PlatformCacheEntry) -> bool:
        return False

    async def purge_matching_persisted_keys(self, predicate: KeyPredicate) -> int | None:
        return None

    async def purge_structured_caches(self) -> int | None:
        return None

    async def list_structured_databases(self) -> list[str] | None:
        return None

    async def delete_database(self, name: str) -> bool:
        return False


class HostPlatformSweeper:
    """Combines a pairing cache adapter and a local state store.

    A missing delegate makes its capabilities unsupported.
    """

    def __init__(
        self,
        *,
        pairings: PairingCache | None = None,
        storage: StateStore | None = None,
    ) -> None:
        self.pairings = pairings
        self.storage = storage

    async def list_cached_pairings(self) -> list[PlatformCacheEntry] | None:
        if self.pairings is None:
            return None
        return await self.pairings.list_cached_pairings()

    async def disconnect_if_live(self, entry: PlatformCacheEntry) -> bool:
        if self.pairings is None:
            return False
        return await self.pairings.disconnect_if_live(entry)

    async def forget_if_supported(self, entry: PlatformCacheEntry) -> bool:
        if self.pairings is None:
            return False
        return await self.pairings.forget_if_supported(entry)

    async def purge_matching_persisted_keys(self, predicate: KeyPredicate) -> int | None:
        if self.storage is None:
            return None
        return await self.storage.purge_matching_persisted_keys(predicate)

    async def purge_structured_caches(self) -> int | None:
        if self.storage is None:
            return None
        return await self.storage.purge_structured_caches()

    async def list_structured_databases(self) -> list[str] | None:
        if self.storage is None:
            return None
        return await self.storage.list_structured_databases()

    async def delete_database(self, name: str) -> bool:
        if self.storage is None:
            return False
        return await self.storage.delete_database(name)
