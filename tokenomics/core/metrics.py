from __future__ import annotations

from prometheus_client import Counter, Histogram

CACHE_EVENTS = Counter(
    "tokenomics_cache_events_total",
    "Cache operations recorded by the Tokenomics backend.",
    labelnames=("cache", "event"),
)
CACHE_REFRESH_LATENCY = Histogram(
    "tokenomics_cache_refresh_seconds",
    "Latency of cache refresh operations.",
    labelnames=("cache",),
)
UPSTREAM_REQUESTS = Counter(
    "tokenomics_upstream_requests_total",
    "Outbound market-data requests.",
    labelnames=("endpoint", "result"),
)
UPSTREAM_REQUEST_LATENCY = Histogram(
    "tokenomics_upstream_request_seconds",
    "Latency of outbound market-data requests.",
    labelnames=("endpoint",),
)
RETRY_ATTEMPTS = Counter(
    "tokenomics_retry_attempts_total",
    "Retries scheduled after a retryable upstream failure.",
    labelnames=("reason",),
)
DEDUP_EVENTS = Counter(
    "tokenomics_dedup_events_total",
    "Request deduplication outcomes.",
    labelnames=("event",),
)


def record_cache_event(cache: str, event: str) -> None:
    """Increment a cache event counter."""
    CACHE_EVENTS.labels(cache=cache, event=event).inc()


def observe_cache_refresh(cache: str, duration_seconds: float) -> None:
    """Record cache refresh latency."""
    CACHE_REFRESH_LATENCY.labels(cache=cache).observe(duration_seconds)


def observe_upstream_request(
    endpoint: str, result: str, duration_seconds: float
) -> None:
    """Record upstream request result and latency."""
    UPSTREAM_REQUESTS.labels(endpoint=endpoint, result=result).inc()
    UPSTREAM_REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration_seconds)


def record_retry_attempt(reason: str) -> None:
    """Count a scheduled retry, labelled by status code or error code."""
    RETRY_ATTEMPTS.labels(reason=reason).inc()


def record_dedup_event(event: str) -> None:
    """Count a deduplication outcome ("started" or "joined")."""
    DEDUP_EVENTS.labels(event=event).inc()
