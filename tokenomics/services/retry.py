"""
Retry with exponential backoff for outbound calls.

An error is retried when its HTTP status or its error code is in the
configured retryable sets. Delays grow as ``initial_delay * multiplier**n``
capped at ``max_delay``. The loop itself is tenacity's ``AsyncRetrying``;
after the last attempt the original error is raised unchanged so callers can
still classify it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tokenomics.core.config import Settings
from tokenomics.core.metrics import record_retry_attempt

logger = logging.getLogger(__name__)
T = TypeVar("T")

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
DEFAULT_RETRYABLE_ERRORS = frozenset(
    {"ECONNABORTED", "ETIMEDOUT", "ENOTFOUND", "ECONNRESET"}
)


@dataclass(frozen=True)
class RetryOptions:
    """Retry policy for a single call. Delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES
    retryable_errors: frozenset[str] = DEFAULT_RETRYABLE_ERRORS

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryOptions":
        return cls(
            max_retries=settings.retry_max_retries,
            initial_delay=settings.retry_initial_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )


def error_status(error: BaseException) -> int | None:
    """HTTP status carried by an error, if any."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def error_code(error: BaseException) -> str | None:
    """Network error code for an error, mapping httpx transport errors."""
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    if isinstance(error, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(error, httpx.ConnectError):
        return "ENOTFOUND"
    if isinstance(error, (httpx.ReadError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return None


def is_retryable_error(error: BaseException, options: RetryOptions) -> bool:
    """Decide whether an error is worth another attempt."""
    code = error_code(error)
    if code is not None and code in options.retryable_errors:
        return True

    status = error_status(error)
    if status is not None and status in options.retryable_statuses:
        return True

    message = str(error)
    return "timeout" in message or "TIMEOUT" in message


def calculate_delay(attempt: int, options: RetryOptions) -> float:
    """Delay before the retry that follows 0-indexed ``attempt``."""
    delay = options.initial_delay * options.backoff_multiplier**attempt
    return min(delay, options.max_delay)


class RetryExecutor:
    """Runs an async operation under a retry policy."""

    def __init__(
        self,
        options: RetryOptions | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.options = options or RetryOptions()
        self._sleep = sleep

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        reason = error_code(exc) or str(error_status(exc) or "timeout")
        record_retry_attempt(reason)
        logger.warning(
            "Retry attempt %d/%d after %.2fs delay: %s",
            retry_state.attempt_number,
            self.options.max_retries,
            delay,
            exc,
        )

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Call ``operation`` until it succeeds, fails permanently or retries run out."""
        options = self.options
        retrying = AsyncRetrying(
            stop=stop_after_attempt(options.max_retries + 1),
            wait=wait_exponential(
                multiplier=options.initial_delay,
                exp_base=options.backoff_multiplier,
                max=options.max_delay,
            ),
            retry=retry_if_exception(partial(is_retryable_error, options=options)),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(operation)


async def retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
) -> T:
    """Convenience wrapper around ``RetryExecutor(options).run(operation)``."""
    return await RetryExecutor(options).run(operation)


__all__ = [
    "RetryExecutor",
    "RetryOptions",
    "calculate_delay",
    "error_code",
    "error_status",
    "is_retryable_error",
    "retry",
]
