# src/pgsample/core/tracing.py
"""OpenTelemetry SDK setup.

The engine and HTTP layer only use the OpenTelemetry API through
SpanFactory. This module wires an SDK TracerProvider behind that API when
telemetry is enabled; when it is disabled nothing is installed and every
span is a no-op.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from pgsample import __version__

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.trace import Tracer

    from pgsample.core.config import TelemetrySettings

logger = structlog.get_logger(__name__)

TRACER_NAME = "pgsample"


def configure_tracing(settings: TelemetrySettings) -> TracerProvider | None:
    """Install a TracerProvider with a batching exporter.

    Args:
        settings: Telemetry section of the configuration

    Returns:
        The installed provider (call shutdown() on exit), or None when
        telemetry is disabled.
    """
    if not settings.enabled:
        return None

    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

    resource = Resource.create({SERVICE_NAME: settings.service_name, SERVICE_VERSION: __version__})
    provider = TracerProvider(resource=resource)

    exporter: SpanExporter
    if settings.exporter == "otlp":
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    logger.info(
        "Tracing configured",
        exporter=settings.exporter,
        endpoint=settings.otlp_endpoint,
        service_name=settings.service_name,
    )
    return provider


def get_tracer(provider: TracerProvider | None) -> Tracer | None:
    """Tracer for SpanFactory, or None when tracing is off."""
    if provider is None:
        return None
    return provider.get_tracer(TRACER_NAME, __version__)
