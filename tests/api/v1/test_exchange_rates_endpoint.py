"""Endpoint tests for /api/v1/exchange-rates."""

from __future__ import annotations

import httpx

from tokenomics.services.coingecko_dto import ExchangeRates


def test_rates_are_fetched_then_cached(api_client, fake_coingecko_client):
    fake_coingecko_client.fetch_exchange_rates.return_value = ExchangeRates(
        base="eur", rates={"usd": 1.08, "gbp": 0.86}, timestamp=1_700_000_000_000
    )

    first = api_client.get("/api/v1/exchange-rates", params={"base": "EUR"})
    second = api_client.get("/api/v1/exchange-rates", params={"base": "eur"})

    assert first.status_code == 200
    assert first.headers["X-Cache-Status"] == "miss"
    assert first.json() == {
        "base": "eur",
        "rates": {"usd": 1.08, "gbp": 0.86},
        "timestamp": 1_700_000_000_000,
    }
    assert second.headers["X-Cache-Status"] == "hit"
    fake_coingecko_client.fetch_exchange_rates.assert_awaited_once_with("eur")


def test_rates_refresh_window_is_five_minutes(api_client, fake_coingecko_client, clock):
    fake_coingecko_client.fetch_exchange_rates.return_value = ExchangeRates(
        base="usd", rates={"eur": 0.92}, timestamp=1
    )
    api_client.get("/api/v1/exchange-rates")

    clock.advance(299)
    assert api_client.get("/api/v1/exchange-rates").headers["X-Cache-Status"] == "hit"

    clock.advance(2)
    assert (
        api_client.get("/api/v1/exchange-rates").headers["X-Cache-Status"]
        == "stale-refresh"
    )


def test_upstream_timeout_is_reported_as_retryable(api_client, fake_coingecko_client):
    fake_coingecko_client.fetch_exchange_rates.side_effect = httpx.ReadTimeout(
        "read timeout"
    )

    response = api_client.get("/api/v1/exchange-rates")

    assert response.status_code == 502
    assert response.json() == {
        "error": "Request timed out. The server is taking too long to respond.",
        "retryable": True,
    }


def test_unreadable_cached_rates_are_refetched(
    api_client, fake_coingecko_client, cache_manager
):
    fake_coingecko_client.fetch_exchange_rates.return_value = ExchangeRates(
        base="usd", rates={"eur": 0.92}, timestamp=1
    )
    key = cache_manager.generate_cache_key("exchange_rates", {"base": "usd"})
    api_client.portal.call(cache_manager.set, key, {"legacy": True})

    response = api_client.get("/api/v1/exchange-rates")

    assert response.status_code == 200
    assert response.headers["X-Cache-Status"] == "miss"
    assert response.json()["rates"] == {"eur": 0.92}
    fake_coingecko_client.fetch_exchange_rates.assert_awaited_once_with("usd")
