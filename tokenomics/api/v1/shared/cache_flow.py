"""Cache lookup and refresh flows shared across market-data endpoints."""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Generic, TypeVar

import httpx
from fastapi import BackgroundTasks, Response
from pydantic import BaseModel, ValidationError

from tokenomics.core.metrics import observe_cache_refresh, record_cache_event
from tokenomics.services.cache import CacheManager, CacheOptions
from tokenomics.services.coingecko_errors import CoinGeckoServiceError
from tokenomics.services.dedup import RequestDeduplicator, get_request_deduplicator

logger = logging.getLogger(__name__)
T = TypeVar("T", bound=BaseModel)

CACHE_STATUS_HEADER = "X-Cache-Status"


class CacheResult(Generic[T]):
    """Container for cache lookup results with status metadata."""

    def __init__(
        self,
        data: T | None = None,
        status: str = "miss",
        headers: dict[str, str] | None = None,
    ):
        self.data = data
        self.status = status
        self.headers = headers or {}


async def handle_cache_lookup(
    cache: CacheManager,
    cache_key: str,
    cache_name: str,
    options: CacheOptions,
    response: Response,
    background_tasks: BackgroundTasks,
    fetch: Callable[[], Awaitable[T]],
    model_class: type[T],
) -> CacheResult[T]:
    """Serve a cached payload and schedule a refresh when it is due.

    A hit inside its refresh window is served as-is and a background task
    replaces it; a miss is left to the caller to fetch synchronously.
    """
    entry = await cache.get_with_metadata(cache_key, options)
    if entry is None:
        record_cache_event(cache_name, "miss")
        return CacheResult(status="miss", headers={CACHE_STATUS_HEADER: "miss"})

    try:
        data = model_class.model_validate(entry.data)
    except ValidationError as exc:
        # Entries written under another schema are dropped and refetched.
        logger.warning(
            "Discarding unreadable %s cache entry %s: %s", cache_name, cache_key, exc
        )
        record_cache_event(cache_name, "invalid_entry")
        await cache.delete(cache_key, options)
        return CacheResult(status="miss", headers={CACHE_STATUS_HEADER: "miss"})

    if cache.entry_needs_refresh(entry):
        record_cache_event(cache_name, "stale_refresh")
        response.headers[CACHE_STATUS_HEADER] = "stale-refresh"
        background_tasks.add_task(
            execute_background_refresh, cache, cache_key, cache_name, options, fetch
        )
        return CacheResult(
            data=data,
            status="stale-refresh",
            headers={CACHE_STATUS_HEADER: "stale-refresh"},
        )

    record_cache_event(cache_name, "hit")
    response.headers[CACHE_STATUS_HEADER] = "hit"
    return CacheResult(data=data, status="hit", headers={CACHE_STATUS_HEADER: "hit"})


async def execute_cache_refresh(
    cache: CacheManager,
    cache_key: str,
    cache_name: str,
    options: CacheOptions,
    fetch: Callable[[], Awaitable[T]],
) -> T:
    """Fetch fresh data and store it, recording refresh latency."""
    start = time.perf_counter()
    try:
        fresh_data = await fetch()
    except Exception:
        record_cache_event(cache_name, "refresh_error")
        raise

    observe_cache_refresh(cache_name, time.perf_counter() - start)
    await cache.set(cache_key, fresh_data.model_dump(mode="json"), options)
    record_cache_event(cache_name, "refresh_success")
    return fresh_data


async def execute_background_refresh(
    cache: CacheManager,
    cache_key: str,
    cache_name: str,
    options: CacheOptions,
    fetch: Callable[[], Awaitable[T]],
    deduplicator: RequestDeduplicator | None = None,
) -> None:
    """Background task wrapper for cache refresh; failures are only logged.

    The stale entry stays in place, so the next request within its TTL is
    still served and schedules another attempt.
    """
    dedup = deduplicator or get_request_deduplicator()
    try:
        await dedup.deduplicate(
            f"refresh:{cache_key}",
            lambda: execute_cache_refresh(cache, cache_key, cache_name, options, fetch),
        )
    except (httpx.HTTPError, CoinGeckoServiceError):
        record_cache_event(cache_name, "background_error")
        logger.warning(
            "Upstream error while refreshing %s cache.", cache_name, exc_info=True
        )
    except Exception:
        record_cache_event(cache_name, "background_unexpected_error")
        logger.exception("Unexpected error while refreshing %s cache.", cache_name)


async def cached_fetch(
    cache: CacheManager,
    cache_key: str,
    cache_name: str,
    options: CacheOptions,
    response: Response,
    background_tasks: BackgroundTasks,
    fetch: Callable[[], Awaitable[T]],
    model_class: type[T],
) -> T:
    """Cache-first read: serve a hit, or fetch, store and serve on a miss."""
    result = await handle_cache_lookup(
        cache,
        cache_key,
        cache_name,
        options,
        response,
        background_tasks,
        fetch,
        model_class,
    )
    if result.data is not None:
        return result.data

    fresh = await execute_cache_refresh(cache, cache_key, cache_name, options, fetch)
    response.headers[CACHE_STATUS_HEADER] = "miss"
    return fresh


__all__ = [
    "CACHE_STATUS_HEADER",
    "CacheResult",
    "cached_fetch",
    "execute_background_refresh",
    "execute_cache_refresh",
    "handle_cache_lookup",
]
