"""Market-data client exception definitions."""

from __future__ import annotations


class CoinGeckoServiceError(Exception):
    """Generic wrapper for market-data service failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidRequestError(CoinGeckoServiceError):
    """Raised before any I/O when request parameters are unusable."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400)


class UpstreamPayloadError(CoinGeckoServiceError):
    """Raised when an upstream response cannot be decoded or mapped."""


__all__ = [
    "CoinGeckoServiceError",
    "InvalidRequestError",
    "UpstreamPayloadError",
]
