"""Shared utilities for API v1 endpoints.

This package provides the cache-first request flow and error responses used
across endpoint modules.
"""

from tokenomics.api.v1.shared.cache_flow import (
    CACHE_STATUS_HEADER,
    CacheResult,
    cached_fetch,
    execute_background_refresh,
    execute_cache_refresh,
    handle_cache_lookup,
)
from tokenomics.api.v1.shared.errors import ApiError, error_response, parse_error

__all__ = [
    # Cache flow
    "CACHE_STATUS_HEADER",
    "CacheResult",
    "cached_fetch",
    "execute_background_refresh",
    "execute_cache_refresh",
    "handle_cache_lookup",
    # Error handling
    "ApiError",
    "error_response",
    "parse_error",
]
