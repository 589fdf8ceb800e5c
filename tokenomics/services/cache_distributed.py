"""
Distributed cache tier backed by Valkey (or any Redis-protocol store).

Every public method absorbs its own failures: errors are logged and turn into
a ``None``/no-op result so the cache manager can fall back to the in-memory
tier. The connection is established lazily on first use and retried on the
next call after a failure.
"""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any, AsyncIterator, Callable, Protocol

from tokenomics.services.cache_entry import CacheEntry

logger = logging.getLogger(__name__)

# Window assumed for values written without the metadata envelope.
LEGACY_TTL_SECONDS = 300.0


class StoreClient(Protocol):
    """Subset of the ``valkey.asyncio.Valkey`` API used by this tier."""

    async def ping(self) -> Any: ...

    async def get(self, key: str) -> str | bytes | None: ...

    async def set(self, key: str, value: str, ex: int | None = None) -> Any: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, *keys: str) -> int: ...

    async def flushdb(self) -> Any: ...

    def scan_iter(self, match: str | None = None) -> AsyncIterator[Any]: ...

    async def aclose(self) -> None: ...


class DistributedCache:
    """Networked cache tier with the same contract as ``InMemoryCache``."""

    def __init__(
        self,
        client_factory: Callable[[], StoreClient],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_factory = client_factory
        self._client: StoreClient | None = None
        self._connected = False
        self._clock = clock

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def _get_client(self) -> StoreClient | None:
        """Return a connected client, connecting on demand."""
        if self._client is not None and self._connected:
            return self._client

        try:
            if self._client is None:
                self._client = self._client_factory()
            await self._client.ping()
        except Exception as exc:
            logger.warning(
                "Distributed cache not available, falling back to in-memory cache: %s",
                exc,
            )
            self._connected = False
            return None

        self._connected = True
        logger.info("Distributed cache connected")
        return self._client

    def _mark_failed(self, operation: str, exc: Exception) -> None:
        logger.warning("Distributed cache %s failed: %s", operation, exc)
        self._connected = False

    def _decode(self, raw: str | bytes) -> CacheEntry[Any]:
        """Turn a stored value into an entry, tolerating foreign writers."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        parsed = json.loads(raw)

        if isinstance(parsed, dict) and "data" in parsed:
            if "refreshed_at" in parsed and "expires_at" in parsed:
                expires_at = float(parsed["expires_at"])
                return CacheEntry(
                    data=parsed["data"],
                    expires_at=expires_at,
                    refreshed_at=float(parsed["refreshed_at"]),
                    refresh_at=float(parsed.get("refresh_at", expires_at)),
                )
            if "refreshedAt" in parsed and "expiresAt" in parsed:
                # Envelope written by the JavaScript dashboard (milliseconds).
                expires_at = float(parsed["expiresAt"]) / 1000
                return CacheEntry(
                    data=parsed["data"],
                    expires_at=expires_at,
                    refreshed_at=float(parsed["refreshedAt"]) / 1000,
                    refresh_at=float(parsed.get("refreshAt", parsed["expiresAt"]))
                    / 1000,
                )

        now = self._clock()
        return CacheEntry(
            data=parsed,
            expires_at=now + LEGACY_TTL_SECONDS,
            refreshed_at=now,
            refresh_at=now + LEGACY_TTL_SECONDS,
        )

    async def get_with_metadata(self, key: str) -> CacheEntry[Any] | None:
        """Return the stored entry, or None when absent, expired or unreachable."""
        client = await self._get_client()
        if client is None:
            return None

        try:
            raw = await client.get(key)
            if raw is None:
                return None
            entry = self._decode(raw)
            if entry.is_expired(self._clock()):
                await client.delete(key)
                return None
            return entry
        except Exception as exc:
            self._mark_failed(f"get for {key}", exc)
            return None

    async def get(self, key: str) -> Any | None:
        entry = await self.get_with_metadata(key)
        return None if entry is None else entry.data

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float,
        refresh_interval: float | None = None,
    ) -> None:
        entry = CacheEntry.create(value, ttl, refresh_interval, self._clock())
        await self.set_entry(key, entry)

    async def set_entry(self, key: str, entry: CacheEntry[Any]) -> None:
        """Store an entry; the store's own expiry mirrors the entry TTL."""
        client = await self._get_client()
        if client is None:
            return

        try:
            serialized = json.dumps(entry.to_envelope())
            ttl = max(1, math.ceil(entry.remaining_ttl(self._clock())))
            await client.set(key, serialized, ex=ttl)
        except (TypeError, ValueError) as exc:
            logger.warning("Distributed cache could not serialize %s: %s", key, exc)
        except Exception as exc:
            self._mark_failed(f"set for {key}", exc)

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        if client is None:
            return
        try:
            await client.delete(key)
        except Exception as exc:
            self._mark_failed(f"delete for {key}", exc)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern, returning the count."""
        client = await self._get_client()
        if client is None:
            return 0
        try:
            keys = [key async for key in client.scan_iter(match=pattern)]
            if keys:
                await client.delete(*keys)
            return len(keys)
        except Exception as exc:
            self._mark_failed(f"delete for pattern {pattern}", exc)
            return 0

    async def clear(self) -> None:
        client = await self._get_client()
        if client is None:
            return
        try:
            await client.flushdb()
        except Exception as exc:
            self._mark_failed("clear", exc)

    async def has(self, key: str) -> bool:
        client = await self._get_client()
        if client is None:
            return False
        try:
            return await client.exists(key) == 1
        except Exception as exc:
            self._mark_failed(f"exists for {key}", exc)
            return False

    async def disconnect(self) -> None:
        """Close the driver connection (call on shutdown)."""
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception as exc:
            logger.warning("Distributed cache disconnect failed: %s", exc)
        finally:
            self._client = None
            self._connected = False


__all__ = ["DistributedCache", "LEGACY_TTL_SECONDS", "StoreClient"]
