from contextlib import asynccontextmanager
import logging

from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from tokenomics.api.metrics import router as metrics_router
from tokenomics.api.v1.routes import router as api_router
from tokenomics.core.config import get_settings
from tokenomics.core.telemetry import (
    configure_opentelemetry,
    instrument_fastapi,
    instrument_httpx,
)
from tokenomics.services.cache import get_cache_manager
from tokenomics.services.coingecko_client import close_coingecko_client

logger = logging.getLogger(__name__)
REQUEST_ID_HEADER = "X-Request-Id"


def _configure_logging(log_level: str) -> None:
    """
    Apply LOG_LEVEL to the application loggers.

    Driver and transport libraries log every request at INFO; they are held
    at WARNING unless DEBUG is requested.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("tokenomics").setLevel(level)

    driver_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in ("httpx", "httpcore", "valkey"):
        logging.getLogger(name).setLevel(driver_level)


def _install_request_id_middleware(app: FastAPI) -> None:
    """Ensure each response includes a stable X-Request-Id header."""

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER, str(uuid4()))
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    settings = get_settings()

    configure_opentelemetry(
        service_name=settings.otel_service_name,
        service_version=settings.otel_service_version,
        otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        otlp_headers=settings.otel_exporter_otlp_headers,
        enabled=settings.otel_enabled,
    )
    instrument_httpx(enabled=settings.otel_enabled)

    yield

    await close_coingecko_client()
    await get_cache_manager().disconnect()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Application factory for FastAPI."""
    settings = get_settings()
    _configure_logging(settings.log_level)

    app = FastAPI(
        title="Tokenomics API",
        description="Cache-first market data backend for the tokenomics dashboard.",
        version="0.1.0",
        lifespan=lifespan,
    )

    instrument_fastapi(app, enabled=settings.otel_enabled)
    _install_request_id_middleware(app)

    allow_origins = settings.cors_allow_origins
    allow_origin_regex = settings.cors_allow_origin_regex
    if allow_origins or allow_origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_origin_regex=allow_origin_regex,
            allow_credentials=bool(allow_origins),
            allow_methods=["GET", "HEAD", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["X-Cache-Status", REQUEST_ID_HEADER],
        )

    app.include_router(metrics_router)
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()
