"""Cache entry and option types shared by both cache tiers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheOptions:
    """Per-call cache policy.

    ``ttl`` and ``refresh_interval`` are seconds. When ``ttl`` is ``None``
    the manager's default TTL applies; when ``refresh_interval`` is ``None``
    the entry has no early-refresh window.
    """

    ttl: float | None = None
    refresh_interval: float | None = None
    namespace: str | None = None


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Cached value plus its timing metadata (epoch seconds)."""

    data: T
    expires_at: float
    refreshed_at: float
    refresh_at: float

    @classmethod
    def create(
        cls,
        data: T,
        ttl: float,
        refresh_interval: float | None,
        now: float,
    ) -> "CacheEntry[T]":
        """Build an entry written at ``now``.

        Keeps ``refreshed_at <= refresh_at <= expires_at``: a missing or
        non-positive refresh interval refreshes at expiry, and an interval
        longer than the TTL is clamped to it.
        """
        expires_at = now + ttl
        if refresh_interval and refresh_interval > 0:
            refresh_at = min(now + refresh_interval, expires_at)
        else:
            refresh_at = expires_at
        return cls(
            data=data,
            expires_at=expires_at,
            refreshed_at=now,
            refresh_at=refresh_at,
        )

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_fresh(self, now: float) -> bool:
        return now < self.refresh_at

    def needs_refresh(self, now: float) -> bool:
        """Stale but still servable: due for a background update."""
        return self.refresh_at <= now < self.expires_at

    def remaining_ttl(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def to_envelope(self) -> dict[str, Any]:
        """Serialisable form stored by the distributed tier."""
        return {
            "data": self.data,
            "refreshed_at": self.refreshed_at,
            "refresh_at": self.refresh_at,
            "expires_at": self.expires_at,
        }


__all__ = ["CacheEntry", "CacheOptions"]
