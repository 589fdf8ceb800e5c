from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response

from tokenomics.api.v1.shared.cache_flow import cached_fetch
from tokenomics.api.v1.shared.errors import error_response
from tokenomics.core.config import Settings, get_settings
from tokenomics.models.market import ExchangeRatesResponse
from tokenomics.services.cache import CacheManager, CacheOptions, get_cache_manager
from tokenomics.services.coingecko_client import (
    CoinGeckoClient,
    get_coingecko_client,
)
from tokenomics.services.sanitize import sanitize_currency

logger = logging.getLogger(__name__)

router = APIRouter()

_CACHE_EXCHANGE_RATES = "exchange_rates"


@router.get(
    "/exchange-rates",
    response_model=ExchangeRatesResponse,
    summary="Get currency conversion rates for a base currency",
)
async def exchange_rates(
    response: Response,
    background_tasks: BackgroundTasks,
    base: Annotated[
        str, Query(max_length=10, description="Base currency code, e.g. 'usd'.")
    ] = "usd",
    cache: CacheManager = Depends(get_cache_manager),
    client: CoinGeckoClient = Depends(get_coingecko_client),
    settings: Settings = Depends(get_settings),
):
    base_code = sanitize_currency(base)

    async def fetch() -> ExchangeRatesResponse:
        rates = await client.fetch_exchange_rates(base_code)
        return ExchangeRatesResponse.from_dto(rates)

    cache_key = CacheManager.generate_cache_key("exchange_rates", {"base": base_code})
    options = CacheOptions(
        ttl=settings.exchange_rate_cache_ttl_seconds,
        refresh_interval=settings.exchange_rate_cache_refresh_seconds,
    )
    try:
        return await cached_fetch(
            cache,
            cache_key,
            _CACHE_EXCHANGE_RATES,
            options,
            response,
            background_tasks,
            fetch,
            ExchangeRatesResponse,
        )
    except Exception as exc:
        logger.warning("Exchange rate request for %s failed: %s", base_code, exc)
        return error_response(exc)
