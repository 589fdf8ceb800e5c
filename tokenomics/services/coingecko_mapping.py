"""Pure mapping utilities for CoinGecko and exchange-rate payloads."""

from __future__ import annotations

import bisect
from datetime import datetime
from typing import Any, Iterable

from tokenomics.services.coingecko_dto import (
    CoinData,
    ExchangeRates,
    OHLCPoint,
    PricePoint,
)
from tokenomics.services.coingecko_errors import UpstreamPayloadError

_MARKET_FIELDS = (
    "current_price",
    "market_cap",
    "fully_diluted_valuation",
    "total_volume",
    "high_24h",
    "low_24h",
    "price_change_24h",
    "price_change_percentage_24h",
    "market_cap_change_24h",
    "market_cap_change_percentage_24h",
    "circulating_supply",
    "total_supply",
    "max_supply",
    "ath",
    "ath_change_percentage",
    "atl",
    "atl_change_percentage",
)

# Fields of /coins/{id} market_data that are keyed by quote currency.
_PER_CURRENCY_FIELDS = {
    "current_price": "current_price",
    "market_cap": "market_cap",
    "fully_diluted_valuation": "fully_diluted_valuation",
    "total_volume": "total_volume",
    "high_24h": "high_24h",
    "low_24h": "low_24h",
    "price_change_24h": "price_change_24h_in_currency",
    "market_cap_change_24h": "market_cap_change_24h_in_currency",
    "ath": "ath",
    "ath_change_percentage": "ath_change_percentage",
    "ath_date": "ath_date",
    "atl": "atl",
    "atl_change_percentage": "atl_change_percentage",
    "atl_date": "atl_date",
}


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    number = _to_float(value)
    return None if number is None else int(number)


def _image(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("large") or value.get("small") or value.get("thumb")
    return value


def map_market_coin(raw: dict[str, Any]) -> CoinData:
    """Map one row of ``/coins/markets``."""
    try:
        fields = {name: _to_float(raw.get(name)) for name in _MARKET_FIELDS}
        return CoinData(
            id=raw["id"],
            symbol=raw["symbol"],
            name=raw["name"],
            image=_image(raw.get("image")),
            market_cap_rank=_to_int(raw.get("market_cap_rank")),
            ath_date=raw.get("ath_date"),
            atl_date=raw.get("atl_date"),
            last_updated=raw.get("last_updated"),
            **fields,
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise UpstreamPayloadError(f"Malformed market entry: {exc}") from exc


def map_coin_detail(
    detail: dict[str, Any], market: dict[str, Any] | None, currency: str
) -> CoinData:
    """Combine ``/coins/{id}`` with its ``/coins/markets`` row.

    The market row is authoritative for prices in the quote currency; the
    detail payload fills identity fields and anything the row lacks.
    """
    if market is not None:
        coin = map_market_coin(market)
        if coin.image is None:
            return _replace(coin, image=_image(detail.get("image")))
        return coin

    try:
        market_data = detail.get("market_data") or {}
        values: dict[str, Any] = {}
        for name, source in _PER_CURRENCY_FIELDS.items():
            raw_value = market_data.get(source)
            if isinstance(raw_value, dict):
                raw_value = raw_value.get(currency)
            values[name] = raw_value if name.endswith("_date") else _to_float(raw_value)
        return CoinData(
            id=detail["id"],
            symbol=detail["symbol"],
            name=detail["name"],
            image=_image(detail.get("image")),
            market_cap_rank=_to_int(
                detail.get("market_cap_rank", market_data.get("market_cap_rank"))
            ),
            price_change_percentage_24h=_to_float(
                market_data.get("price_change_percentage_24h")
            ),
            market_cap_change_percentage_24h=_to_float(
                market_data.get("market_cap_change_percentage_24h")
            ),
            circulating_supply=_to_float(market_data.get("circulating_supply")),
            total_supply=_to_float(market_data.get("total_supply")),
            max_supply=_to_float(market_data.get("max_supply")),
            last_updated=detail.get("last_updated"),
            **values,
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise UpstreamPayloadError(f"Malformed coin payload: {exc}") from exc


def _replace(coin: CoinData, **changes: Any) -> CoinData:
    return CoinData(**{**coin.__dict__, **changes})


def map_search_coin(raw: dict[str, Any]) -> CoinData:
    """Map a ``/search`` hit; search results carry no market figures."""
    try:
        return CoinData(
            id=raw["id"],
            symbol=raw["symbol"],
            name=raw["name"],
            image=raw.get("thumb") or raw.get("large"),
            market_cap_rank=_to_int(raw.get("market_cap_rank")),
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise UpstreamPayloadError(f"Malformed search entry: {exc}") from exc


def map_price_points(
    pairs: Iterable[Any],
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[PricePoint]:
    """Map ``[[ms, price], ...]`` pairs, keeping those inside [start, end]."""
    start_ms = int(start.timestamp() * 1000) if start else None
    end_ms = int(end.timestamp() * 1000) if end else None
    points: list[PricePoint] = []
    try:
        for timestamp, price in pairs:
            ts = int(timestamp)
            if start_ms is not None and ts < start_ms:
                continue
            if end_ms is not None and ts > end_ms:
                continue
            points.append(PricePoint(timestamp=ts, price=float(price)))
    except (TypeError, ValueError) as exc:
        raise UpstreamPayloadError(f"Malformed price series: {exc}") from exc
    return points


def map_ohlc(
    rows: Iterable[Any], volumes: Iterable[Any] | None = None
) -> list[OHLCPoint]:
    """Map ``[[ms, o, h, l, c], ...]`` and attach the nearest volume sample."""
    volume_series = sorted(
        (int(ts), float(volume)) for ts, volume in (volumes or [])
    )
    volume_times = [ts for ts, _ in volume_series]

    points: list[OHLCPoint] = []
    try:
        for timestamp, open_, high, low, close in rows:
            ts = int(timestamp)
            points.append(
                OHLCPoint(
                    timestamp=ts,
                    open=float(open_),
                    high=float(high),
                    low=float(low),
                    close=float(close),
                    volume=_nearest_volume(ts, volume_times, volume_series),
                )
            )
    except (TypeError, ValueError) as exc:
        raise UpstreamPayloadError(f"Malformed OHLC series: {exc}") from exc
    return points


def _nearest_volume(
    ts: int, times: list[int], series: list[tuple[int, float]]
) -> float | None:
    if not series:
        return None
    index = bisect.bisect_left(times, ts)
    candidates = [i for i in (index - 1, index) if 0 <= i < len(series)]
    best = min(candidates, key=lambda i: abs(times[i] - ts))
    return series[best][1]


def map_exchange_rates(raw: dict[str, Any], base: str, now_ms: int) -> ExchangeRates:
    """Normalise an exchange-rate payload to lower-case currency codes."""
    try:
        rates = {
            code.lower(): float(rate) for code, rate in (raw.get("rates") or {}).items()
        }
        timestamp = raw.get("timestamp")
        if timestamp is None and raw.get("time_last_updated") is not None:
            timestamp = int(raw["time_last_updated"]) * 1000
        return ExchangeRates(
            base=str(raw.get("base") or base).lower(),
            rates=rates,
            timestamp=int(timestamp) if timestamp is not None else now_ms,
        )
    except (TypeError, ValueError, AttributeError) as exc:
        raise UpstreamPayloadError(f"Malformed exchange-rate payload: {exc}") from exc


__all__ = [
    "map_coin_detail",
    "map_exchange_rates",
    "map_market_coin",
    "map_ohlc",
    "map_price_points",
    "map_search_coin",
]
