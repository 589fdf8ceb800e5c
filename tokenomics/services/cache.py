"""
Two-tier cache with stale-while-revalidate support.

Provides namespaced caching over:
- An in-memory tier that is always present
- An optional distributed tier (Valkey) that degrades silently to the memory tier
- Refresh windows so callers can serve stale data while refreshing in the background
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

import valkey.asyncio as valkey

from tokenomics.core.config import Settings, get_settings
from tokenomics.core.metrics import record_cache_event
from tokenomics.services.cache_distributed import DistributedCache
from tokenomics.services.cache_entry import CacheEntry, CacheOptions
from tokenomics.services.cache_keys import generate_cache_key
from tokenomics.services.cache_memory import InMemoryCache

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheBackend(Protocol):
    """Contract shared by the in-memory and distributed tiers."""

    async def get(self, key: str) -> Any | None: ...

    async def get_with_metadata(self, key: str) -> CacheEntry[Any] | None: ...

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float,
        refresh_interval: float | None = None,
    ) -> None: ...

    async def set_entry(self, key: str, entry: CacheEntry[Any]) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def has(self, key: str) -> bool: ...

    async def disconnect(self) -> None: ...


class CacheManager:
    """
    Single entry point over both cache tiers.

    Reads try the distributed tier first and backfill the memory tier on a
    hit; writes go to memory first so the value is locally readable even if
    the distributed write fails. A miss and a tier failure look the same to
    callers: ``None``.
    """

    def __init__(
        self,
        memory: InMemoryCache,
        distributed: DistributedCache | None = None,
        *,
        default_ttl: float = 300,
        namespace: str = "tokenomics",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._memory = memory
        self._distributed = distributed
        self._default_ttl = default_ttl
        self._namespace = namespace
        self._clock = clock

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def distributed_enabled(self) -> bool:
        return self._distributed is not None

    def _full_key(self, key: str, options: CacheOptions | None) -> str:
        namespace = (options.namespace if options else None) or self._namespace
        return f"{namespace}:{key}"

    def _ttl(self, options: CacheOptions | None) -> float:
        if options is not None and options.ttl:
            return options.ttl
        return self._default_ttl

    async def get(self, key: str, options: CacheOptions | None = None) -> Any | None:
        """Return the cached value or None when missing or expired."""
        entry = await self.get_with_metadata(key, options)
        return None if entry is None else entry.data

    async def get_with_metadata(
        self, key: str, options: CacheOptions | None = None
    ) -> CacheEntry[Any] | None:
        """Return the entry with refresh metadata, or None when missing or expired.

        A distributed entry replaces the local one only when it was written more
        recently, so a local write whose distributed write failed keeps winning
        over the older remote copy.
        """
        full_key = self._full_key(key, options)
        local = await self._memory.get_with_metadata(full_key)

        if self._distributed is not None:
            remote = await self._distributed.get_with_metadata(full_key)
            if remote is not None and (
                local is None or remote.refreshed_at > local.refreshed_at
            ):
                record_cache_event("distributed", "hit")
                # Keep the writer's timing so the local copy expires in step.
                await self._memory.set_entry(full_key, remote)
                return remote
            if remote is None:
                record_cache_event("distributed", "miss")

        record_cache_event("memory", "miss" if local is None else "hit")
        return local

    def entry_needs_refresh(self, entry: CacheEntry[Any]) -> bool:
        """Refresh decision for an entry already read via ``get_with_metadata``."""
        return entry.needs_refresh(self._clock())

    async def needs_refresh(
        self, key: str, options: CacheOptions | None = None
    ) -> bool:
        """True when the entry is still servable but due for a background update.

        Returns False for a missing or expired entry: that is a miss and the
        caller must fetch synchronously.
        """
        entry = await self.get_with_metadata(key, options)
        if entry is None:
            return False
        return self.entry_needs_refresh(entry)

    async def set(
        self, key: str, value: Any, options: CacheOptions | None = None
    ) -> None:
        """Write to the memory tier, then to the distributed tier when configured."""
        full_key = self._full_key(key, options)
        refresh_interval = options.refresh_interval if options else None
        entry = CacheEntry.create(
            value, self._ttl(options), refresh_interval, self._clock()
        )

        await self._memory.set_entry(full_key, entry)
        if self._distributed is not None:
            await self._distributed.set_entry(full_key, entry)

    async def delete(self, key: str, options: CacheOptions | None = None) -> None:
        full_key = self._full_key(key, options)
        if self._distributed is None:
            await self._memory.delete(full_key)
            return
        await asyncio.gather(
            self._memory.delete(full_key), self._distributed.delete(full_key)
        )

    async def has(self, key: str, options: CacheOptions | None = None) -> bool:
        full_key = self._full_key(key, options)
        if self._distributed is not None and await self._distributed.has(full_key):
            return True
        return await self._memory.has(full_key)

    async def clear(self, namespace: str | None = None) -> None:
        """Clear one namespace, or everything when no namespace is given."""
        if namespace is None:
            logger.info("Clearing all cache entries")
            await self._memory.clear()
            if self._distributed is not None:
                await self._distributed.clear()
            return

        prefix = f"{namespace}:"
        for key in await self._memory.keys(prefix):
            await self._memory.delete(key)
        removed_remote = 0
        if self._distributed is not None:
            removed_remote = await self._distributed.delete_pattern(f"{prefix}*")
        logger.info(
            "Cleared cache namespace %s (%d distributed keys)", namespace, removed_remote
        )

    @staticmethod
    def generate_cache_key(prefix: str, params: Mapping[str, Any]) -> str:
        """Deterministic key from a prefix and parameters (names sorted)."""
        return generate_cache_key(prefix, params)

    async def disconnect(self) -> None:
        """Release the distributed tier connection (call on shutdown)."""
        if self._distributed is not None:
            await self._distributed.disconnect()

    def get_stats(self) -> dict[str, Any]:
        return {
            "namespace": self._namespace,
            "default_ttl": self._default_ttl,
            "memory_entries": len(self._memory),
            "memory_max_size": self._memory.max_size,
            "distributed_enabled": self._distributed is not None,
            "distributed_connected": bool(
                self._distributed is not None and self._distributed.is_connected
            ),
        }


# =============================================================================
# Factory Functions
# =============================================================================


def build_cache_manager(settings: Settings) -> CacheManager:
    """Assemble the cache tiers selected by configuration."""
    distributed: DistributedCache | None = None
    if settings.distributed_cache_enabled:
        url = settings.effective_valkey_url

        def _client_factory() -> valkey.Valkey:
            return valkey.from_url(url, encoding="utf-8", decode_responses=True)

        distributed = DistributedCache(_client_factory)
        logger.info("Distributed cache tier enabled")

    return CacheManager(
        InMemoryCache(max_size=settings.cache_memory_max_size),
        distributed,
        default_ttl=settings.cache_default_ttl_seconds,
        namespace=settings.cache_namespace,
    )


_cache_manager: CacheManager | None = None


def get_cache_manager() -> CacheManager:
    """Return the process-wide cache manager, building it on first use.

    Also serves as the FastAPI dependency hook for cache usage.
    """
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = build_cache_manager(get_settings())
    return _cache_manager


def reset_cache_manager() -> None:
    """Drop the process-wide instance so the next call rebuilds it (tests only)."""
    global _cache_manager
    _cache_manager = None


__all__ = [
    "CacheBackend",
    "CacheEntry",
    "CacheManager",
    "CacheOptions",
    "build_cache_manager",
    "get_cache_manager",
    "reset_cache_manager",
]
