from __future__ import annotations

import fnmatch
from typing import AsyncIterator, Iterator
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from tokenomics.main import create_app
from tokenomics.services.cache import CacheManager, get_cache_manager
from tokenomics.services.cache_distributed import DistributedCache
from tokenomics.services.cache_memory import InMemoryCache
from tokenomics.services.coingecko_client import CoinGeckoClient, get_coingecko_client
from tokenomics.services.dedup import RequestDeduplicator


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeValkey:
    """In-memory Valkey replacement used for tests."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self._store: dict[str, tuple[str, float | None]] = {}
        self._clock = clock or FakeClock()
        self.should_fail = False
        self.closed = False
        self.ping_calls = 0
        self.get_calls = 0

    def _check(self) -> None:
        if self.should_fail:
            raise ConnectionError("valkey unavailable")

    def _prune(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, (_, expires_at) in self._store.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            self._store.pop(key, None)

    async def ping(self) -> bool:
        self.ping_calls += 1
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self.get_calls += 1
        self._check()
        self._prune()
        record = self._store.get(key)
        return None if record is None else record[0]

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        expires_at = self._clock() + ex if ex else None
        self._store[key] = (value, expires_at)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self._store.pop(key, None) is not None:
                removed += 1
        return removed

    async def exists(self, *keys: str) -> int:
        self._check()
        self._prune()
        return sum(1 for key in keys if key in self._store)

    async def flushdb(self) -> bool:
        self._check()
        self._store.clear()
        return True

    async def scan_iter(self, match: str | None = None) -> AsyncIterator[str]:
        self._check()
        self._prune()
        for key in list(self._store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        self.closed = True

    def raw(self, key: str) -> str | None:
        record = self._store.get(key)
        return None if record is None else record[0]

    def ttl(self, key: str) -> float | None:
        record = self._store.get(key)
        if record is None or record[1] is None:
            return None
        return record[1] - self._clock()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_valkey(clock: FakeClock) -> FakeValkey:
    return FakeValkey(clock)


@pytest.fixture()
def memory_cache(clock: FakeClock) -> InMemoryCache:
    return InMemoryCache(max_size=100, clock=clock)


@pytest.fixture()
def distributed_cache(fake_valkey: FakeValkey, clock: FakeClock) -> DistributedCache:
    return DistributedCache(lambda: fake_valkey, clock=clock)


@pytest.fixture()
def cache_manager(
    memory_cache: InMemoryCache, distributed_cache: DistributedCache, clock: FakeClock
) -> CacheManager:
    return CacheManager(
        memory_cache, distributed_cache, default_ttl=300, namespace="test", clock=clock
    )


@pytest.fixture()
def deduplicator() -> RequestDeduplicator:
    return RequestDeduplicator(max_age=5.0)


@pytest.fixture()
def fake_coingecko_client() -> Mock:
    client = Mock(spec=CoinGeckoClient)
    client.fetch_coin_data = AsyncMock()
    client.fetch_price_history = AsyncMock(return_value=[])
    client.fetch_ohlc = AsyncMock(return_value=[])
    client.fetch_top_coins = AsyncMock(return_value=[])
    client.fetch_coins_by_ids = AsyncMock(return_value=[])
    client.search_coins = AsyncMock(return_value=[])
    client.fetch_exchange_rates = AsyncMock()
    return client


@pytest.fixture()
def api_client(
    cache_manager: CacheManager, fake_coingecko_client: Mock
) -> Iterator[TestClient]:
    """Test client wired to the fake cache tiers and a mocked upstream client."""
    app = create_app()
    app.dependency_overrides[get_cache_manager] = lambda: cache_manager
    app.dependency_overrides[get_coingecko_client] = lambda: fake_coingecko_client
    with TestClient(app) as client:
        yield client
