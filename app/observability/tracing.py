"""
Distributed Tracing with OpenTelemetry.

Traces requests end to end, including database queries and IPN processing.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode

from app.config import settings


def setup_tracing() -> None:
    """Install a TracerProvider exporting to the OTLP collector."""
    if not settings.tracing_enabled:
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.api_version,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    """Instrument the FastAPI app. Must be called after app creation."""
    if not settings.tracing_enabled:
        return

    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """Instrument an async engine for query tracing."""
    if not settings.tracing_enabled:
        return

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def _set_attributes(span: Span, attributes: dict[str, Any]) -> None:
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            span.set_attribute(key, value)
        else:
            span.set_attribute(key, str(value))


@contextmanager
def trace_operation(operation_name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a named span, recording any exception on it.

    Usage:
        with trace_operation("ipn_apply", order_id=event.order_id) as span:
            span.set_attribute("outcome", outcome.value)
    """
    tracer = trace.get_tracer("app.operations")
    with tracer.start_as_current_span(operation_name, record_exception=False) as span:
        _set_attributes(span, attributes)
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
