from __future__ import annotations

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .settings import TelemetrySettings

logger = logging.getLogger(__name__)


def _tracer_provider(settings: TelemetrySettings) -> TracerProvider:
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: settings.otel_service_name}))
    exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def instrument(app, settings: TelemetrySettings | None = None) -> None:
    """Trace requests, correlate log records and follow outbound Stripe calls.

    Without OTEL_EXPORTER_OTLP_ENDPOINT the API's global no-op provider stays
    in place, so the billing spans cost nothing.
    """
    settings = settings or TelemetrySettings()
    if settings.otel_exporter_otlp_endpoint:
        trace.set_tracer_provider(_tracer_provider(settings))
        logger.info(
            "Exporting traces for %s to %s", settings.otel_service_name, settings.otel_exporter_otlp_endpoint
        )

    FastAPIInstrumentor.instrument_app(app, excluded_urls=settings.otel_excluded_urls)
    LoggingInstrumentor().instrument(set_logging_format=False)
    # stripe talks HTTP through requests.
    RequestsInstrumentor().instrument()
