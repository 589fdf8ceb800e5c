"""
Request deduplication to prevent duplicate upstream API calls.

When multiple concurrent requests ask for the same resource, only one
upstream call is made and all requesters share the result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from tokenomics.core.config import get_settings
from tokenomics.core.metrics import record_dedup_event
from tokenomics.services.cache_keys import generate_cache_key

logger = logging.getLogger(__name__)
T = TypeVar("T")

DEFAULT_MAX_AGE_SECONDS = 5.0


@dataclass
class PendingRequest:
    """Tracks an in-flight operation."""

    task: asyncio.Task[Any]
    started_at: float


class RequestDeduplicator:
    """
    Ensures concurrent calls sharing a key share one in-flight operation.

    Pattern:
    - The first call for a key starts the operation as a task
    - Later calls for the same key await that task instead of starting another
    - The registration is dropped when the task settles, success or failure,
      so a failure never poisons the key
    - Registrations older than ``max_age`` are dropped before each lookup in
      case a removal never fired

    Callers await the task through ``asyncio.shield`` so one cancelled caller
    does not cancel the fetch for the others.

    Usage:
        deduplicator = RequestDeduplicator()
        data = await deduplicator.deduplicate(
            "coin:id:\\"bitcoin\\"",
            lambda: client.fetch_coin_data("bitcoin"),
        )
    """

    def __init__(
        self,
        max_age: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pending: dict[str, PendingRequest] = {}
        self._max_age = max_age
        self._clock = clock

    async def deduplicate(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Join the in-flight operation for ``key`` or start a new one."""
        self._cleanup()

        existing = self._pending.get(key)
        if existing is not None:
            record_dedup_event("joined")
            logger.debug("Reusing pending request for key %s", key)
            return await asyncio.shield(existing.task)

        task: asyncio.Task[T] = asyncio.ensure_future(operation())
        pending = PendingRequest(task=task, started_at=self._clock())
        self._pending[key] = pending
        record_dedup_event("started")

        def _release(fut: asyncio.Future[Any]) -> None:
            # Mark the failure as retrieved; every caller may have been cancelled.
            if not fut.cancelled():
                fut.exception()
            # A stale-evicted key may have been registered again meanwhile.
            if self._pending.get(key) is pending:
                del self._pending[key]

        task.add_done_callback(_release)
        return await asyncio.shield(task)

    def is_pending(self, key: str) -> bool:
        self._cleanup()
        return key in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def clear(self) -> None:
        """Forget all registrations; running operations are left to finish."""
        self._pending.clear()

    def _cleanup(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, pending in self._pending.items()
            if now - pending.started_at > self._max_age
        ]
        for key in expired:
            logger.warning(
                "Dropping pending request older than %.1fs: %s", self._max_age, key
            )
            del self._pending[key]


def generate_request_key(prefix: str, params: Mapping[str, Any]) -> str:
    """Deduplication key for a request; identical to its cache key."""
    return generate_cache_key(prefix, params)


_deduplicator: RequestDeduplicator | None = None


def get_request_deduplicator() -> RequestDeduplicator:
    """Return the process-wide deduplicator."""
    global _deduplicator
    if _deduplicator is None:
        _deduplicator = RequestDeduplicator(
            max_age=get_settings().dedup_max_age_seconds
        )
    return _deduplicator


__all__ = [
    "PendingRequest",
    "RequestDeduplicator",
    "generate_request_key",
    "get_request_deduplicator",
]
