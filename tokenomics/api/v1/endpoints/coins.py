from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response

from tokenomics.api.v1.shared.cache_flow import cached_fetch
from tokenomics.api.v1.shared.errors import error_response
from tokenomics.core.config import Settings, get_settings
from tokenomics.models.market import CoinListResponse, MarketDataResponse
from tokenomics.services.cache import CacheManager, CacheOptions, get_cache_manager
from tokenomics.services.coingecko_client import (
    CoinGeckoClient,
    InvalidRequestError,
    get_coingecko_client,
)
from tokenomics.services.sanitize import (
    sanitize_coin_id,
    sanitize_currency,
    sanitize_search_query,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_CACHE_COIN = "coin_market_data"
_CACHE_COIN_SEARCH = "coin_search"
CANDLESTICK = "candlestick"


def _ensure_aware_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize all timestamps to UTC."""
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Declared before /coins/{coin_id} so "search" is not captured as an id.
@router.get(
    "/coins/search",
    response_model=CoinListResponse,
    summary="Search coins, list top coins or look up coins by id",
)
async def search_coins(
    response: Response,
    background_tasks: BackgroundTasks,
    q: Annotated[
        str | None,
        Query(max_length=100, description="Name or symbol to search for."),
    ] = None,
    limit: Annotated[
        int,
        Query(ge=1, le=250, description="Maximum number of coins to return."),
    ] = 10,
    ids: Annotated[
        str | None,
        Query(description="Comma-separated coin ids to fetch market data for."),
    ] = None,
    currency: Annotated[str, Query(max_length=10)] = "usd",
    cache: CacheManager = Depends(get_cache_manager),
    client: CoinGeckoClient = Depends(get_coingecko_client),
    settings: Settings = Depends(get_settings),
):
    """Coin listing backed by the cache; ``ids`` wins over ``q``."""
    query = sanitize_search_query(q)
    id_list = [coin for coin in (ids or "").split(",") if sanitize_coin_id(coin)]
    vs_currency = sanitize_currency(currency)

    async def fetch() -> CoinListResponse:
        if id_list:
            coins = await client.fetch_coins_by_ids(id_list, vs_currency)
            return CoinListResponse.from_dtos(coins[:limit])
        if query:
            coins = await client.search_coins(query)
            return CoinListResponse.from_dtos(coins[:limit], query=query)
        coins = await client.fetch_top_coins(limit, vs_currency)
        return CoinListResponse.from_dtos(coins)

    cache_key = CacheManager.generate_cache_key(
        "coins:search",
        {
            "q": query,
            "ids": sorted(sanitize_coin_id(coin) for coin in id_list),
            "limit": limit,
            "currency": vs_currency,
        },
    )
    options = CacheOptions(
        ttl=settings.search_cache_ttl_seconds,
        refresh_interval=settings.search_cache_refresh_seconds,
    )
    try:
        return await cached_fetch(
            cache,
            cache_key,
            _CACHE_COIN_SEARCH,
            options,
            response,
            background_tasks,
            fetch,
            CoinListResponse,
        )
    except Exception as exc:
        logger.warning("Coin search failed: %s", exc)
        return error_response(exc)


@router.get(
    "/coins/{coin_id}",
    response_model=MarketDataResponse,
    summary="Get market data, price history and tokenomics for a coin",
)
async def coin_market_data(
    coin_id: str,
    response: Response,
    background_tasks: BackgroundTasks,
    currency: Annotated[str, Query(max_length=10)] = "usd",
    days: Annotated[
        int,
        Query(ge=1, le=3650, description="Length of the price history in days."),
    ] = 7,
    chart_type: Annotated[
        str,
        Query(description="Chart the data is for; 'candlestick' adds OHLC data."),
    ] = "line",
    start: Annotated[
        datetime | None,
        Query(alias="from", description="Start of the price history range."),
    ] = None,
    end: Annotated[
        datetime | None,
        Query(alias="to", description="End of the price history range."),
    ] = None,
    cache: CacheManager = Depends(get_cache_manager),
    client: CoinGeckoClient = Depends(get_coingecko_client),
    settings: Settings = Depends(get_settings),
):
    """Cache-first market data for one coin."""
    sanitized_id = sanitize_coin_id(coin_id)
    if not sanitized_id:
        return error_response(InvalidRequestError("Invalid coin ID"))

    start_utc = _ensure_aware_utc(start) if start is not None else None
    end_utc = _ensure_aware_utc(end) if end is not None else None
    if start_utc is not None and end_utc is not None and start_utc > end_utc:
        return error_response(InvalidRequestError("Invalid date range"))

    vs_currency = sanitize_currency(currency)
    candlestick = chart_type == CANDLESTICK

    async def fetch() -> MarketDataResponse:
        coin_task = client.fetch_coin_data(sanitized_id, vs_currency)
        history_task = client.fetch_price_history(
            sanitized_id,
            days=days,
            currency=vs_currency,
            start=start_utc,
            end=end_utc,
        )
        if candlestick:
            coin, history, ohlc = await asyncio.gather(
                coin_task,
                history_task,
                client.fetch_ohlc(sanitized_id, days=days, currency=vs_currency),
            )
            return MarketDataResponse.from_dtos(coin, history, ohlc)
        coin, history = await asyncio.gather(coin_task, history_task)
        return MarketDataResponse.from_dtos(coin, history)

    cache_key = CacheManager.generate_cache_key(
        "coin",
        {
            "id": sanitized_id,
            "currency": vs_currency,
            "days": days,
            "chart_type": CANDLESTICK if candlestick else "line",
            "from": start_utc.isoformat() if start_utc else None,
            "to": end_utc.isoformat() if end_utc else None,
        },
    )
    options = CacheOptions(
        ttl=settings.coin_cache_ttl_seconds,
        refresh_interval=settings.coin_cache_refresh_seconds,
    )
    try:
        return await cached_fetch(
            cache,
            cache_key,
            _CACHE_COIN,
            options,
            response,
            background_tasks,
            fetch,
            MarketDataResponse,
        )
    except Exception as exc:
        logger.warning("Market data request for %s failed: %s", sanitized_id, exc)
        return error_response(exc)
