"""Shared error handling utilities for API endpoints.

Upstream failures are classified into an :class:`ApiError` that carries a
user-facing message and whether the client may usefully retry. Endpoints
turn it into a ``{"error": ..., "retryable": ...}`` JSON body.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import status
from fastapi.responses import JSONResponse

from tokenomics.services.coingecko_errors import (
    CoinGeckoServiceError,
    InvalidRequestError,
    UpstreamPayloadError,
)
from tokenomics.services.retry import error_code, error_status

_TIMEOUT_CODES = frozenset({"ECONNABORTED", "ETIMEDOUT"})
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})
DEFAULT_ERROR_MESSAGE = "An unexpected error occurred"


@dataclass(frozen=True)
class ApiError:
    """Classified failure with a message safe to show to users."""

    message: str
    status_code: int | None = None
    code: str | None = None
    is_network_error: bool = False
    is_timeout_error: bool = False
    is_rate_limit_error: bool = False
    is_server_error: bool = False
    is_client_error: bool = False
    retryable: bool = False

    @property
    def http_status(self) -> int:
        """Status code to answer the API caller with."""
        if self.status_code is not None:
            return self.status_code
        if self.is_network_error or self.is_timeout_error:
            return status.HTTP_502_BAD_GATEWAY
        return status.HTTP_500_INTERNAL_SERVER_ERROR


def parse_error(error: BaseException) -> ApiError:
    """Classify an exception raised while serving a request."""
    if isinstance(error, InvalidRequestError):
        return ApiError(
            message=str(error),
            status_code=status.HTTP_400_BAD_REQUEST,
            is_client_error=True,
        )
    if isinstance(error, UpstreamPayloadError):
        return ApiError(
            message="Received an invalid response from the market data provider.",
            status_code=status.HTTP_502_BAD_GATEWAY,
            is_server_error=True,
        )

    status_code = error_status(error)
    code = error_code(error)
    text = str(error)

    is_network_error = status_code is None and (
        isinstance(error, httpx.TransportError) or code is not None or "Network" in text
    )
    is_timeout_error = (
        code in _TIMEOUT_CODES or "timeout" in text or "TIMEOUT" in text
    )
    is_rate_limit_error = status_code == 429
    is_server_error = status_code is not None and 500 <= status_code < 600
    is_client_error = status_code is not None and 400 <= status_code < 500

    retryable = (
        is_network_error
        or is_timeout_error
        or is_rate_limit_error
        or is_server_error
        or (is_client_error and status_code in _RETRYABLE_CLIENT_STATUSES)
    )

    if is_network_error and not is_timeout_error:
        message = (
            "Unable to connect to the server. Please check your internet connection."
        )
    elif is_timeout_error:
        message = "Request timed out. The server is taking too long to respond."
    elif is_rate_limit_error:
        message = "Too many requests. Please wait a moment and try again."
    elif is_server_error:
        message = "Server error. The service is temporarily unavailable."
    elif status_code == 404:
        message = "The requested resource was not found."
    elif status_code == 403:
        message = (
            "Access forbidden. You may not have permission to access this resource."
        )
    elif status_code == 401:
        message = "Authentication failed. Please check your API key."
    elif isinstance(error, CoinGeckoServiceError) and text:
        message = text
    else:
        message = DEFAULT_ERROR_MESSAGE

    return ApiError(
        message=message,
        status_code=status_code,
        code=code,
        is_network_error=is_network_error,
        is_timeout_error=is_timeout_error,
        is_rate_limit_error=is_rate_limit_error,
        is_server_error=is_server_error,
        is_client_error=is_client_error,
        retryable=retryable,
    )


def get_user_friendly_error_message(error: ApiError) -> str:
    """Short prefixed message for display in a UI banner."""
    if error.is_timeout_error:
        return "Timeout Error: The request took too long. Please try again."
    if error.is_network_error:
        return "Connection Error: Please check your internet connection and try again."
    if error.is_rate_limit_error:
        return (
            "Rate Limit: Too many requests. Please wait a moment before trying again."
        )
    if error.is_server_error:
        return (
            "Server Error: The service is temporarily unavailable. "
            "Please try again later."
        )
    return error.message


def error_response(error: BaseException) -> JSONResponse:
    """JSON error body for an exception, with a matching status code."""
    parsed = parse_error(error)
    return JSONResponse(
        status_code=parsed.http_status,
        content={"error": parsed.message, "retryable": parsed.retryable},
    )


__all__ = [
    "ApiError",
    "error_response",
    "get_user_friendly_error_message",
    "parse_error",
]
