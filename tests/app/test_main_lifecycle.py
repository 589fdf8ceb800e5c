"""Tests for FastAPI app lifecycle helpers."""

from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tokenomics import main


def test_configure_logging_quiets_driver_loggers():
    names = ("httpx", "httpcore", "valkey", "tokenomics")
    original = {name: logging.getLogger(name).level for name in names}

    try:
        main._configure_logging("INFO")
        assert logging.getLogger("tokenomics").level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("valkey").level == logging.WARNING

        main._configure_logging("debug")
        assert logging.getLogger("tokenomics").level == logging.DEBUG
        assert logging.getLogger("httpcore").level == logging.DEBUG

        main._configure_logging("not-a-level")
        assert logging.getLogger("tokenomics").level == logging.INFO
    finally:
        for name, level in original.items():
            logging.getLogger(name).setLevel(level)


def test_request_id_middleware_respects_existing_header(monkeypatch):
    app = FastAPI()
    main._install_request_id_middleware(app)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    client = TestClient(app)
    response = client.get("/ping", headers={main.REQUEST_ID_HEADER: "external-id"})
    assert response.headers[main.REQUEST_ID_HEADER] == "external-id"

    monkeypatch.setattr(main, "uuid4", lambda: "generated-id")
    response = client.get("/ping")
    assert response.headers[main.REQUEST_ID_HEADER] == "generated-id"


@pytest.mark.asyncio
async def test_lifespan_configures_telemetry_and_releases_resources(monkeypatch):
    fake_settings = SimpleNamespace(
        otel_service_name="svc",
        otel_service_version="1.0.0",
        otel_exporter_otlp_endpoint="http://otel",
        otel_exporter_otlp_headers=None,
        otel_enabled=True,
    )
    configure_calls = {}

    def fake_configure(**kwargs):
        configure_calls.update(kwargs)

    httpx_calls = {}

    def fake_instrument_httpx(*, enabled: bool):
        httpx_calls["enabled"] = enabled

    fake_cache = MagicMock()
    fake_cache.disconnect = AsyncMock()
    close_client = AsyncMock()

    monkeypatch.setattr(main, "get_settings", lambda: fake_settings)
    monkeypatch.setattr(main, "configure_opentelemetry", fake_configure)
    monkeypatch.setattr(main, "instrument_httpx", fake_instrument_httpx)
    monkeypatch.setattr(main, "get_cache_manager", lambda: fake_cache)
    monkeypatch.setattr(main, "close_coingecko_client", close_client)

    async with main.lifespan(FastAPI()):
        assert configure_calls["service_name"] == "svc"
        assert configure_calls["enabled"] is True
        assert httpx_calls["enabled"] is True
        fake_cache.disconnect.assert_not_awaited()

    fake_cache.disconnect.assert_awaited_once()
    close_client.assert_awaited_once()


def test_create_app_passes_otel_flag_and_mounts_routes(monkeypatch):
    fake_settings = SimpleNamespace(
        log_level="INFO",
        cors_allow_origins=["http://localhost:3000"],
        cors_allow_origin_regex=None,
        otel_enabled=False,
    )
    fastapi_call = {}

    def fake_instrument_fastapi(app: FastAPI, *, enabled: bool):
        fastapi_call["enabled"] = enabled

    monkeypatch.setattr(main, "get_settings", lambda: fake_settings)
    monkeypatch.setattr(main, "instrument_fastapi", fake_instrument_fastapi)
    monkeypatch.setattr(main, "_configure_logging", lambda _: None)

    created_app = main.create_app()

    paths = {route.path for route in created_app.routes}
    assert fastapi_call["enabled"] is False
    assert {
        "/metrics",
        "/api/v1/health-check",
        "/api/v1/coins/search",
        "/api/v1/coins/{coin_id}",
        "/api/v1/exchange-rates",
    } <= paths
