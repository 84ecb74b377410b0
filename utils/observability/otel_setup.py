"""OpenTelemetry wiring: a tracer provider exporting over OTLP/HTTP, to Langfuse or any OTLP collector."""

from __future__ import annotations

import base64
import os
from enum import Enum
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_SERVICE_NAME = "agentdesk"


class TelemetryTarget(str, Enum):
    LANGFUSE = "langfuse"
    OTEL = "otel"


def setup_telemetry(
    service_name: str = DEFAULT_SERVICE_NAME,
    target: TelemetryTarget | str = TelemetryTarget.OTEL,
) -> trace.Tracer:
    """Install a global tracer provider that batches spans to ``target``.

    Environment variables:
        - langfuse: LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY, LANGFUSE_HOST
        - otel: OTEL_EXPORTER_OTLP_ENDPOINT (and optionally OTEL_EXPORTER_OTLP_HEADERS)

    Raises:
        ValueError: unknown target, or its environment variables are missing.
    """
    exporter = create_exporter(target)

    resource = Resource.create({SERVICE_NAME: os.getenv("OTEL_SERVICE_NAME", service_name)})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    logger.info("telemetry_enabled", target=TelemetryTarget(target).value, service_name=service_name)
    return trace.get_tracer(service_name)


def create_exporter(target: TelemetryTarget | str) -> OTLPSpanExporter:
    try:
        target = TelemetryTarget(target)
    except ValueError:
        raise ValueError(f"Unknown telemetry target: {target}") from None
    if target is TelemetryTarget.LANGFUSE:
        return create_langfuse_exporter()
    return create_otel_exporter()


def create_langfuse_exporter() -> OTLPSpanExporter:
    public_key = os.getenv("LANGFUSE_PUBLIC_KEY")
    secret_key = os.getenv("LANGFUSE_SECRET_KEY")
    host = os.getenv("LANGFUSE_HOST")

    missing = [
        name
        for name, val in (("LANGFUSE_PUBLIC_KEY", public_key), ("LANGFUSE_SECRET_KEY", secret_key), ("LANGFUSE_HOST", host))
        if not val
    ]
    if missing:
        raise ValueError(f"Langfuse telemetry needs environment variables: {', '.join(missing)}")

    token = base64.b64encode(f"{public_key}:{secret_key}".encode()).decode()
    return OTLPSpanExporter(
        endpoint=host.rstrip("/") + "/api/public/otel/v1/traces",
        headers={"authorization": f"Basic {token}"},
    )


def create_otel_exporter() -> OTLPSpanExporter:
    # The exporter reads OTEL_EXPORTER_OTLP_* itself; only the endpoint is mandatory here
    if not os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
        raise ValueError("OTel telemetry needs environment variable: OTEL_EXPORTER_OTLP_ENDPOINT")
    return OTLPSpanExporter()


def get_tracer(service_name: str = DEFAULT_SERVICE_NAME, target: Optional[TelemetryTarget | str] = None) -> trace.Tracer:
    """Return a tracer, installing a provider first when ``target`` is given and none is set up yet."""
    if target is not None and not isinstance(trace.get_tracer_provider(), TracerProvider):
        return setup_telemetry(service_name, target)
    return trace.get_tracer(service_name)
