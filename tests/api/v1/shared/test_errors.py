"""Tests for upstream error classification."""

from __future__ import annotations

import json

import httpx
import pytest

from tokenomics.api.v1.shared.errors import (
    error_response,
    get_user_friendly_error_message,
    parse_error,
)
from tokenomics.services.coingecko_errors import (
    InvalidRequestError,
    UpstreamPayloadError,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.coingecko.test/coins")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("upstream", request=request, response=response)


@pytest.mark.parametrize(
    ("status", "message", "retryable"),
    [
        (429, "Too many requests. Please wait a moment and try again.", True),
        (500, "Server error. The service is temporarily unavailable.", True),
        (404, "The requested resource was not found.", False),
        (403, "Access forbidden. You may not have permission to access this resource.", False),
        (401, "Authentication failed. Please check your API key.", False),
        (408, "An unexpected error occurred", True),
        (422, "An unexpected error occurred", False),
    ],
)
def test_status_errors(status, message, retryable):
    parsed = parse_error(_status_error(status))

    assert parsed.message == message
    assert parsed.retryable is retryable
    assert parsed.http_status == status


def test_network_error():
    parsed = parse_error(httpx.ConnectError("connection refused"))

    assert parsed.is_network_error is True
    assert parsed.is_timeout_error is False
    assert parsed.retryable is True
    assert parsed.code == "ENOTFOUND"
    assert parsed.http_status == 502
    assert get_user_friendly_error_message(parsed).startswith("Connection Error")


def test_timeout_error():
    parsed = parse_error(httpx.ReadTimeout("timed out"))

    assert parsed.is_timeout_error is True
    assert parsed.retryable is True
    assert get_user_friendly_error_message(parsed).startswith("Timeout Error")


def test_domain_errors():
    invalid = parse_error(InvalidRequestError("Invalid coin ID"))
    assert invalid.http_status == 400
    assert invalid.message == "Invalid coin ID"
    assert invalid.retryable is False

    payload = parse_error(UpstreamPayloadError("bad json"))
    assert payload.http_status == 502
    assert payload.retryable is False


def test_unknown_error_gets_generic_message():
    parsed = parse_error(KeyError("secret internal detail"))

    assert parsed.message == "An unexpected error occurred"
    assert parsed.http_status == 500
    assert parsed.retryable is False


def test_error_response_body():
    response = error_response(_status_error(503))

    assert response.status_code == 503
    assert json.loads(response.body) == {
        "error": "Server error. The service is temporarily unavailable.",
        "retryable": True,
    }
