"""Data transfer objects used by the market-data client."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class CoinData:
    """Market snapshot for one coin in one quote currency."""

    id: str
    symbol: str
    name: str
    image: str | None = None
    current_price: float | None = None
    market_cap: float | None = None
    market_cap_rank: int | None = None
    fully_diluted_valuation: float | None = None
    total_volume: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    price_change_24h: float | None = None
    price_change_percentage_24h: float | None = None
    market_cap_change_24h: float | None = None
    market_cap_change_percentage_24h: float | None = None
    circulating_supply: float | None = None
    total_supply: float | None = None
    max_supply: float | None = None
    ath: float | None = None
    ath_change_percentage: float | None = None
    ath_date: str | None = None
    atl: float | None = None
    atl_change_percentage: float | None = None
    atl_date: str | None = None
    last_updated: str | None = None


@dataclass(frozen=True)
class PricePoint:
    """Price at a point in time (epoch milliseconds)."""

    timestamp: int
    price: float


@dataclass(frozen=True)
class OHLCPoint:
    """Candlestick bucket (epoch milliseconds)."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float | None = None


@dataclass(frozen=True)
class ExchangeRates:
    """Conversion rates from ``base`` to other currency codes (lower-case)."""

    base: str
    rates: dict[str, float] = field(default_factory=dict)
    timestamp: int = 0
