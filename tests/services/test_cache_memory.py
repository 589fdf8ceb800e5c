"""Tests for the in-memory cache tier."""

from __future__ import annotations

import pytest

from tokenomics.services.cache_entry import CacheEntry
from tokenomics.services.cache_memory import InMemoryCache


@pytest.mark.asyncio
async def test_set_then_get_returns_value(memory_cache):
    await memory_cache.set("k", {"price": 1.5}, ttl=60)

    assert await memory_cache.get("k") == {"price": 1.5}
    assert await memory_cache.has("k") is True


@pytest.mark.asyncio
async def test_missing_key_returns_none(memory_cache):
    assert await memory_cache.get("absent") is None
    assert await memory_cache.get_with_metadata("absent") is None
    assert await memory_cache.has("absent") is False


@pytest.mark.asyncio
async def test_entry_expires_at_ttl_boundary(memory_cache, clock):
    await memory_cache.set("k", "v", ttl=10)

    clock.advance(9.5)
    assert await memory_cache.get("k") == "v"

    clock.advance(0.5)
    assert await memory_cache.get("k") is None
    assert len(memory_cache) == 0


@pytest.mark.asyncio
async def test_metadata_tracks_refresh_window(memory_cache, clock):
    start = clock()
    await memory_cache.set("k", "v", ttl=120, refresh_interval=60)

    entry = await memory_cache.get_with_metadata("k")
    assert entry.refreshed_at == start
    assert entry.refresh_at == start + 60
    assert entry.expires_at == start + 120


@pytest.mark.asyncio
async def test_refresh_interval_longer_than_ttl_is_clamped(memory_cache, clock):
    await memory_cache.set("k", "v", ttl=30, refresh_interval=90)

    entry = await memory_cache.get_with_metadata("k")
    assert entry.refresh_at == entry.expires_at


@pytest.mark.asyncio
async def test_values_are_copied_in_and_out(memory_cache):
    payload = {"prices": [1, 2]}
    await memory_cache.set("k", payload, ttl=60)
    payload["prices"].append(3)

    cached = await memory_cache.get("k")
    assert cached == {"prices": [1, 2]}

    cached["prices"].append(4)
    assert await memory_cache.get("k") == {"prices": [1, 2]}


@pytest.mark.asyncio
async def test_full_cache_evicts_oldest_inserted_key(clock):
    cache = InMemoryCache(max_size=2, clock=clock)
    await cache.set("a", 1, ttl=60)
    await cache.set("b", 2, ttl=60)
    await cache.get("a")  # reads do not change eviction order

    await cache.set("c", 3, ttl=60)

    assert len(cache) == 2
    assert await cache.get("a") is None
    assert await cache.get("b") == 2
    assert await cache.get("c") == 3


@pytest.mark.asyncio
async def test_overwriting_existing_key_does_not_evict(clock):
    cache = InMemoryCache(max_size=2, clock=clock)
    await cache.set("a", 1, ttl=60)
    await cache.set("b", 2, ttl=60)

    await cache.set("a", 10, ttl=60)

    assert await cache.get("a") == 10
    assert await cache.get("b") == 2


@pytest.mark.asyncio
async def test_set_entry_keeps_writer_metadata(memory_cache, clock):
    entry = CacheEntry(
        data="v",
        expires_at=clock() + 50,
        refreshed_at=clock() - 70,
        refresh_at=clock() - 10,
    )
    await memory_cache.set_entry("k", entry)

    stored = await memory_cache.get_with_metadata("k")
    assert stored.refreshed_at == entry.refreshed_at
    assert stored.refresh_at == entry.refresh_at
    assert stored.expires_at == entry.expires_at


@pytest.mark.asyncio
async def test_delete_clear_and_keys(memory_cache):
    await memory_cache.set("ns:a", 1, ttl=60)
    await memory_cache.set("ns:b", 2, ttl=60)
    await memory_cache.set("other:c", 3, ttl=60)

    assert sorted(await memory_cache.keys("ns:")) == ["ns:a", "ns:b"]

    await memory_cache.delete("ns:a")
    assert await memory_cache.get("ns:a") is None

    await memory_cache.clear()
    assert len(memory_cache) == 0


def test_max_size_must_be_positive():
    with pytest.raises(ValueError):
        InMemoryCache(max_size=0)
