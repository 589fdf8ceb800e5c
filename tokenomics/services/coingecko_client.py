from __future__ import annotations

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Iterable

import httpx

from tokenomics.core.config import Settings, get_settings
from tokenomics.core.metrics import observe_upstream_request
from tokenomics.services.coingecko_dto import (
    CoinData,
    ExchangeRates,
    OHLCPoint,
    PricePoint,
)
from tokenomics.services.coingecko_errors import (
    CoinGeckoServiceError,
    InvalidRequestError,
    UpstreamPayloadError,
)
from tokenomics.services.coingecko_mapping import (
    map_coin_detail,
    map_exchange_rates,
    map_market_coin,
    map_ohlc,
    map_price_points,
    map_search_coin,
)
from tokenomics.services.dedup import (
    RequestDeduplicator,
    generate_request_key,
    get_request_deduplicator,
)
from tokenomics.services.retry import RetryExecutor, RetryOptions
from tokenomics.services.sanitize import (
    sanitize_coin_id,
    sanitize_currency,
    sanitize_number,
    sanitize_search_query,
)

logger = logging.getLogger(__name__)

__all__ = [
    "CoinGeckoClient",
    "SUPPORTED_OHLC_DAYS",
    "closest_ohlc_days",
    "get_coingecko_client",
    # DTOs
    "CoinData",
    "ExchangeRates",
    "OHLCPoint",
    "PricePoint",
    # Exceptions
    "CoinGeckoServiceError",
    "InvalidRequestError",
    "UpstreamPayloadError",
]

SUPPORTED_OHLC_DAYS = (1, 7, 14, 30, 90, 180, 365)
MAX_PAGE_SIZE = 250


def closest_ohlc_days(days: int) -> int:
    """Snap ``days`` to the nearest range the OHLC endpoint accepts."""
    return min(SUPPORTED_OHLC_DAYS, key=lambda value: abs(value - days))


class CoinGeckoClient:
    """Async client for CoinGecko market data and exchange rates.

    Every outbound request is collapsed with identical in-flight requests and
    retried with exponential backoff on transient failures.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        exchange_client: httpx.AsyncClient | None = None,
        retry_options: RetryOptions | None = None,
        deduplicator: RequestDeduplicator | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        headers = {"Accept": "application/json"}
        if self._settings.coingecko_api_key:
            headers["x-cg-pro-api-key"] = self._settings.coingecko_api_key

        self._http = http_client or httpx.AsyncClient(
            base_url=self._settings.coingecko_api_url,
            timeout=self._settings.coingecko_timeout_seconds,
            headers=headers,
        )
        self._exchange_http = exchange_client or httpx.AsyncClient(
            timeout=self._settings.coingecko_timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self._retry = RetryExecutor(
            retry_options or RetryOptions.from_settings(self._settings)
        )
        self._deduplicator = deduplicator or get_request_deduplicator()

    async def aclose(self) -> None:
        await self._http.aclose()
        await self._exchange_http.aclose()

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET ``url`` and decode JSON, deduplicated and retried."""
        key = generate_request_key(
            f"upstream:{endpoint}", {"url": url, "params": params or {}}
        )

        async def fetch() -> Any:
            start = time.perf_counter()
            try:
                response = await client.get(url, params=params)
                response.raise_for_status()
            except httpx.HTTPStatusError:
                observe_upstream_request(endpoint, "http_error", time.perf_counter() - start)
                raise
            except httpx.HTTPError:
                observe_upstream_request(endpoint, "transport_error", time.perf_counter() - start)
                raise

            try:
                payload = response.json()
            except ValueError as exc:
                observe_upstream_request(endpoint, "invalid_payload", time.perf_counter() - start)
                raise UpstreamPayloadError(
                    f"Upstream returned invalid JSON for {endpoint}."
                ) from exc

            observe_upstream_request(endpoint, "success", time.perf_counter() - start)
            return payload

        return await self._deduplicator.deduplicate(
            key, lambda: self._retry.run(fetch)
        )

    async def fetch_coin_data(self, coin_id: str, currency: str = "usd") -> CoinData:
        """Fetch coin details merged with its market row in ``currency``."""
        sanitized_id = sanitize_coin_id(coin_id)
        if not sanitized_id:
            raise InvalidRequestError("Invalid coin ID")
        vs_currency = sanitize_currency(currency)

        detail, markets = await asyncio.gather(
            self._get_json(
                self._http,
                "coin_detail",
                f"/coins/{sanitized_id}",
                {
                    "localization": "false",
                    "tickers": "false",
                    "community_data": "false",
                    "developer_data": "false",
                },
            ),
            self._get_json(
                self._http,
                "coin_markets",
                "/coins/markets",
                {"vs_currency": vs_currency, "ids": sanitized_id},
            ),
        )
        if not isinstance(detail, dict):
            raise UpstreamPayloadError("Coin detail payload is not an object.")

        market_row = None
        if isinstance(markets, list):
            market_row = next(
                (row for row in markets if isinstance(row, dict) and row.get("id") == sanitized_id),
                None,
            )
        return map_coin_detail(detail, market_row, vs_currency)

    async def fetch_price_history(
        self,
        coin_id: str,
        *,
        days: int = 7,
        currency: str = "usd",
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[PricePoint]:
        """Fetch the price series, optionally restricted to ``[start, end]``."""
        sanitized_id = sanitize_coin_id(coin_id)
        if not sanitized_id:
            raise InvalidRequestError("Invalid coin ID")
        if start is not None and end is not None and start > end:
            raise InvalidRequestError("Invalid date range")

        span_days = sanitize_number(days, minimum=1, maximum=3650, integer=True) or 7
        if start is not None:
            # The chart endpoint counts back from now, so cover the range start.
            now = datetime.now(timezone.utc)
            start_utc = start if start.tzinfo else start.replace(tzinfo=timezone.utc)
            span_days = max(1, math.ceil((now - start_utc).total_seconds() / 86400))

        params: dict[str, Any] = {
            "vs_currency": sanitize_currency(currency),
            "days": span_days,
        }
        if span_days > 1:
            params["interval"] = "daily"

        payload = await self._get_json(
            self._http,
            "market_chart",
            f"/coins/{sanitized_id}/market_chart",
            params,
        )
        prices = payload.get("prices") if isinstance(payload, dict) else None
        if prices is None:
            raise UpstreamPayloadError("Market chart payload has no prices.")
        return map_price_points(prices, start=start, end=end)

    async def fetch_ohlc(
        self, coin_id: str, *, days: int = 7, currency: str = "usd"
    ) -> list[OHLCPoint]:
        """Fetch candlesticks with trading volume from the market chart."""
        sanitized_id = sanitize_coin_id(coin_id)
        if not sanitized_id:
            raise InvalidRequestError("Invalid coin ID")
        vs_currency = sanitize_currency(currency)
        ohlc_days = closest_ohlc_days(int(days))

        rows = await self._get_json(
            self._http,
            "ohlc",
            f"/coins/{sanitized_id}/ohlc",
            {"vs_currency": vs_currency, "days": ohlc_days},
        )
        if not isinstance(rows, list):
            raise UpstreamPayloadError("OHLC payload is not a list.")

        volumes: Iterable[Any] | None = None
        try:
            chart = await self._get_json(
                self._http,
                "market_chart",
                f"/coins/{sanitized_id}/market_chart",
                {"vs_currency": vs_currency, "days": ohlc_days},
            )
            if isinstance(chart, dict):
                volumes = chart.get("total_volumes")
        except (httpx.HTTPError, CoinGeckoServiceError) as exc:
            logger.warning(
                "Volume data unavailable for %s, returning OHLC without volume: %s",
                sanitized_id,
                exc,
            )

        return map_ohlc(rows, volumes)

    async def fetch_top_coins(
        self, limit: int = 10, currency: str = "usd"
    ) -> list[CoinData]:
        """Fetch the highest market-cap coins."""
        per_page = sanitize_number(limit, minimum=1, maximum=MAX_PAGE_SIZE, integer=True)
        payload = await self._get_json(
            self._http,
            "coin_markets",
            "/coins/markets",
            {
                "vs_currency": sanitize_currency(currency),
                "order": "market_cap_desc",
                "per_page": per_page or 10,
                "page": 1,
                "sparkline": "false",
            },
        )
        if not isinstance(payload, list):
            raise UpstreamPayloadError("Markets payload is not a list.")
        return [map_market_coin(row) for row in payload]

    async def fetch_coins_by_ids(
        self, ids: Iterable[str], currency: str = "usd"
    ) -> list[CoinData]:
        """Fetch market rows for specific coins; empty input makes no request."""
        cleaned = [coin for coin in (sanitize_coin_id(raw) for raw in ids) if coin]
        if not cleaned:
            return []

        payload = await self._get_json(
            self._http,
            "coin_markets",
            "/coins/markets",
            {
                "vs_currency": sanitize_currency(currency),
                "ids": ",".join(cleaned),
                "order": "market_cap_desc",
                "sparkline": "false",
            },
        )
        if not isinstance(payload, list):
            raise UpstreamPayloadError("Markets payload is not a list.")
        return [map_market_coin(row) for row in payload]

    async def search_coins(self, query: str) -> list[CoinData]:
        """Search coins by name or symbol; blank queries make no request."""
        cleaned = sanitize_search_query(query)
        if not cleaned:
            return []

        payload = await self._get_json(
            self._http, "search", "/search", {"query": cleaned}
        )
        coins = payload.get("coins") if isinstance(payload, dict) else None
        if coins is None:
            raise UpstreamPayloadError("Search payload has no coins.")
        return [map_search_coin(row) for row in coins]

    async def fetch_exchange_rates(self, base: str = "usd") -> ExchangeRates:
        """Fetch conversion rates for ``base`` with lower-case currency codes."""
        base_code = sanitize_currency(base)
        url = f"{self._settings.exchange_rate_api_url.rstrip('/')}/{base_code.upper()}"
        payload = await self._get_json(self._exchange_http, "exchange_rates", url)
        if not isinstance(payload, dict):
            raise UpstreamPayloadError("Exchange-rate payload is not an object.")
        return map_exchange_rates(payload, base_code, int(time.time() * 1000))


_client: CoinGeckoClient | None = None


def get_coingecko_client() -> CoinGeckoClient:
    """FastAPI dependency returning the shared market-data client."""
    global _client
    if _client is None:
        _client = CoinGeckoClient()
    return _client


async def close_coingecko_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
