"""OpenTelemetry configuration and initialization."""

from __future__ import annotations

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.propagate import set_global_textmap
from opentelemetry.propagators.b3 import B3MultiFormat
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)


def configure_opentelemetry(
    service_name: str,
    service_version: str,
    otlp_endpoint: str,
    otlp_headers: str | None = None,
    enabled: bool = False,
) -> bool:
    """Install a tracer provider exporting spans over OTLP.

    Returns True when tracing was configured. Failures are logged and the
    service keeps running untraced.
    """
    if not enabled:
        logger.info("OpenTelemetry tracing is disabled")
        return False

    try:
        set_global_textmap(B3MultiFormat())
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": service_version,
                "service.namespace": "tokenomics",
            }
        )
        tracer_provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(tracer_provider)
        tracer_provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=otlp_endpoint, headers=otlp_headers)
            )
        )
    except Exception as exc:
        logger.warning("Failed to configure OpenTelemetry, continuing without tracing: %s", exc)
        return False

    logger.info(
        "OpenTelemetry configured for service '%s' exporting to %s",
        service_name,
        otlp_endpoint,
    )
    return True


def instrument_fastapi(app: Any, enabled: bool = False) -> None:
    """Instrument a FastAPI application for tracing."""
    if not enabled:
        return

    try:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI instrumentation enabled")
    except Exception as exc:
        logger.warning("Failed to instrument FastAPI: %s", exc)


def instrument_httpx(enabled: bool = False) -> None:
    """Instrument outbound httpx clients, including the market-data client."""
    if not enabled:
        return

    try:
        HTTPXClientInstrumentor().instrument()
        logger.info("HTTPX client instrumentation enabled")
    except Exception as exc:
        logger.warning("Failed to instrument HTTPX: %s", exc)
