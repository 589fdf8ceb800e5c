"""
Cache key generation.

Keys are built from a prefix and a parameter mapping. Parameter names are
sorted before serialising, so the same logical request always produces the
same key regardless of the order the caller assembled its parameters in.
The same keys double as request-deduplication identities.
"""

from __future__ import annotations

import json
from typing import Any, Mapping


def _serialize(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def generate_cache_key(prefix: str, params: Mapping[str, Any]) -> str:
    """Generate a deterministic key such as ``exchange-rates:base:"usd"``.

    Args:
        prefix: Resource prefix (e.g. ``"coin"``)
        params: Request parameters; values must be JSON-compatible or
            stringable (dates are rendered with ``str``)

    Returns:
        ``{prefix}:{name}:{json}|{name}:{json}...`` with names sorted
    """
    segment = "|".join(f"{name}:{_serialize(params[name])}" for name in sorted(params))
    return f"{prefix}:{segment}"


__all__ = ["generate_cache_key"]
