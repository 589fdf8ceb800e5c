"""Sanitisation helpers for user-supplied query parameters."""

from __future__ import annotations

import math
import re

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_SCRIPT_TAGS = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_EVENT_HANDLERS = re.compile(r"on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)
_DANGEROUS_SCHEMES = re.compile(r"javascript:|data:text/html", re.IGNORECASE)
_COIN_ID_INVALID = re.compile(r"[^a-zA-Z0-9_-]")
_NON_LETTERS = re.compile(r"[^a-zA-Z]")
_QUERY_INVALID = re.compile(r"[^\w\s.-]")


def sanitize_string(
    value: str | None,
    *,
    max_length: int | None = None,
    allow_special_chars: bool = False,
    trim: bool = True,
) -> str:
    """Strip control characters and markup that could be reflected back."""
    if value is None:
        return ""

    sanitized = str(value)
    if trim:
        sanitized = sanitized.strip()
    sanitized = _CONTROL_CHARS.sub("", sanitized)

    if not allow_special_chars:
        sanitized = _SCRIPT_TAGS.sub("", sanitized)
        sanitized = _EVENT_HANDLERS.sub("", sanitized)
        sanitized = _DANGEROUS_SCHEMES.sub("", sanitized)

    if max_length is not None and len(sanitized) > max_length:
        sanitized = sanitized[:max_length]
    return sanitized


def sanitize_coin_id(coin_id: str | None) -> str:
    """Lower-case coin id restricted to letters, digits, '-' and '_'."""
    if not coin_id:
        return ""
    sanitized = sanitize_string(coin_id, max_length=100)
    return _COIN_ID_INVALID.sub("", sanitized).lower()


def sanitize_currency(currency: str | None) -> str:
    """Lower-case currency code, defaulting to 'usd'."""
    if not currency:
        return "usd"
    sanitized = sanitize_string(currency, max_length=10)
    return _NON_LETTERS.sub("", sanitized).lower() or "usd"


def sanitize_search_query(query: str | None, max_length: int = 100) -> str:
    """Search text without markup; empty when nothing usable remains."""
    if not query:
        return ""
    sanitized = sanitize_string(query, max_length=max_length)
    sanitized = sanitized.replace("<", "").replace(">", "")
    sanitized = _QUERY_INVALID.sub("", sanitized)
    return " ".join(sanitized.split())


def sanitize_number(
    value: str | int | float | None,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
    integer: bool = False,
    allow_negative: bool = True,
) -> float | int | None:
    """Parse a number and clamp it into range; None when unparseable."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None

    if not allow_negative and number < 0:
        number = 0.0
    if minimum is not None and number < minimum:
        number = minimum
    if maximum is not None and number > maximum:
        number = maximum
    return int(number) if integer else number


__all__ = [
    "sanitize_coin_id",
    "sanitize_currency",
    "sanitize_number",
    "sanitize_search_query",
    "sanitize_string",
]
