from __future__ import annotations

from typing import Iterable

from pydantic import BaseModel, Field

from tokenomics.services.coingecko_client import CoinData as CoinDataDTO
from tokenomics.services.coingecko_client import (
    ExchangeRates as ExchangeRatesDTO,
    OHLCPoint as OHLCPointDTO,
    PricePoint as PricePointDTO,
)


class CoinData(BaseModel):
    id: str = Field(..., description="CoinGecko coin identifier.")
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

    @classmethod
    def from_dto(cls, dto: CoinDataDTO) -> "CoinData":
        return cls(**dto.__dict__)


class PricePoint(BaseModel):
    timestamp: int = Field(..., description="Epoch milliseconds.")
    price: float

    @classmethod
    def from_dto(cls, dto: PricePointDTO) -> "PricePoint":
        return cls(**dto.__dict__)


class OHLCPoint(BaseModel):
    timestamp: int = Field(..., description="Epoch milliseconds.")
    open: float
    high: float
    low: float
    close: float
    volume: float | None = None

    @classmethod
    def from_dto(cls, dto: OHLCPointDTO) -> "OHLCPoint":
        return cls(**dto.__dict__)


class TokenomicsSummary(BaseModel):
    circulating_supply: float | None = None
    total_supply: float | None = None
    max_supply: float | None = None
    market_cap: float | None = None
    fully_diluted_valuation: float | None = None
    price: float | None = None
    price_change_24h: float | None = None
    price_change_percentage_24h: float | None = None
    volume_24h: float | None = None
    market_cap_rank: int | None = None

    @classmethod
    def from_dto(cls, dto: CoinDataDTO) -> "TokenomicsSummary":
        return cls(
            circulating_supply=dto.circulating_supply,
            total_supply=dto.total_supply,
            max_supply=dto.max_supply,
            market_cap=dto.market_cap,
            fully_diluted_valuation=dto.fully_diluted_valuation,
            price=dto.current_price,
            price_change_24h=dto.price_change_24h,
            price_change_percentage_24h=dto.price_change_percentage_24h,
            volume_24h=dto.total_volume,
            market_cap_rank=dto.market_cap_rank,
        )


class MarketDataResponse(BaseModel):
    coin: CoinData
    price_history: list[PricePoint] = Field(default_factory=list)
    tokenomics: TokenomicsSummary
    ohlc_data: list[OHLCPoint] | None = Field(
        None, description="Present only for candlestick charts."
    )

    @classmethod
    def from_dtos(
        cls,
        coin: CoinDataDTO,
        price_history: Iterable[PricePointDTO],
        ohlc_data: Iterable[OHLCPointDTO] | None = None,
    ) -> "MarketDataResponse":
        return cls(
            coin=CoinData.from_dto(coin),
            price_history=[PricePoint.from_dto(point) for point in price_history],
            tokenomics=TokenomicsSummary.from_dto(coin),
            ohlc_data=(
                [OHLCPoint.from_dto(point) for point in ohlc_data]
                if ohlc_data is not None
                else None
            ),
        )


class CoinListResponse(BaseModel):
    query: str | None = Field(None, description="Search text, when searching.")
    results: list[CoinData] = Field(default_factory=list)

    @classmethod
    def from_dtos(
        cls, coins: Iterable[CoinDataDTO], query: str | None = None
    ) -> "CoinListResponse":
        return cls(query=query, results=[CoinData.from_dto(coin) for coin in coins])


class ExchangeRatesResponse(BaseModel):
    base: str
    rates: dict[str, float] = Field(default_factory=dict)
    timestamp: int = Field(..., description="Epoch milliseconds of the quote.")

    @classmethod
    def from_dto(cls, dto: ExchangeRatesDTO) -> "ExchangeRatesResponse":
        return cls(base=dto.base, rates=dict(dto.rates), timestamp=dto.timestamp)


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str
