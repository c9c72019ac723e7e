"""
OpenTelemetry tracing for queue operations.

Library code opens spans through ``job_span`` whether or not
``setup_tracing`` ran; without a configured provider the spans are no-ops.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from jobqueue import __version__
from jobqueue.config import get_settings

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

    from jobqueue.types.job import Job

_provider: TracerProvider | None = None


def setup_tracing() -> TracerProvider:
    """
    Install the process tracer provider. Safe to call more than once.

    Spans leave the process over OTLP only when
    ``otel_exporter_otlp_endpoint`` is set.
    """
    global _provider

    if _provider is not None:
        return _provider

    settings = get_settings()
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
    )

    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer() -> Tracer:
    return trace.get_tracer("jobqueue", __version__)


@contextmanager
def job_span(name: str, job: "Job | None" = None, **attributes: Any) -> Iterator[Span]:
    """
    Open a span for a queue operation.

    When ``job`` is given the span carries its id, type and attempt count.
    Extra keyword attributes are set as-is; None values are skipped.
    """
    with get_tracer().start_as_current_span(name) as span:
        if job is not None:
            span.set_attribute("job.id", job.id)
            span.set_attribute("job.type", job.type)
            span.set_attribute("job.attempt", job.attempt_count)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def instrument_fastapi(app: "FastAPI") -> None:
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: "AsyncEngine") -> None:
    """Trace statements issued by the SQL store."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
