"""Process-local bounded cache tier."""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable

from tokenomics.services.cache_entry import CacheEntry

logger = logging.getLogger(__name__)


class InMemoryCache:
    """
    Fixed-capacity key/value store with per-entry expiry.

    Expired entries are evicted lazily when read. When the store is full a new
    key evicts the oldest inserted entry; this is a memory bound, not an LRU.
    Values are copied on the way in and out so callers never share mutable
    state with the cache.

    The methods are coroutines only for symmetry with the distributed tier;
    none of them suspend.
    """

    def __init__(
        self,
        max_size: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1: {max_size}")
        self._store: dict[str, CacheEntry[Any]] = {}
        self._max_size = max_size
        self._clock = clock

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._store)

    def _live_entry(self, key: str) -> CacheEntry[Any] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._store[key]
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        entry = self._live_entry(key)
        if entry is None:
            return None
        return copy.deepcopy(entry.data)

    async def get_with_metadata(self, key: str) -> CacheEntry[Any] | None:
        """Return a copy of the entry including its timing metadata."""
        entry = self._live_entry(key)
        if entry is None:
            return None
        return CacheEntry(
            data=copy.deepcopy(entry.data),
            expires_at=entry.expires_at,
            refreshed_at=entry.refreshed_at,
            refresh_at=entry.refresh_at,
        )

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float,
        refresh_interval: float | None = None,
    ) -> None:
        """Store a value written now with the given TTL and refresh interval."""
        entry = CacheEntry.create(value, ttl, refresh_interval, self._clock())
        await self.set_entry(key, entry)

    async def set_entry(self, key: str, entry: CacheEntry[Any]) -> None:
        """Store an entry keeping its existing timing metadata."""
        if key not in self._store and len(self._store) >= self._max_size:
            oldest = next(iter(self._store))
            del self._store[oldest]
            logger.debug("Evicted oldest cache entry %s", oldest)

        self._store[key] = CacheEntry(
            data=copy.deepcopy(entry.data),
            expires_at=entry.expires_at,
            refreshed_at=entry.refreshed_at,
            refresh_at=entry.refresh_at,
        )

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def clear(self) -> None:
        self._store.clear()

    async def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        """Keys currently stored under ``prefix`` (expired ones included)."""
        return [key for key in self._store if key.startswith(prefix)]

    async def disconnect(self) -> None:
        """Nothing to release; present for interface symmetry."""


__all__ = ["InMemoryCache"]
