"""
Structured logging for queue processes.

Modules log through ``logging.getLogger(__name__)`` with ``extra={...}``;
``setup_logging`` routes those records through structlog so every line
carries the same fields: level, timestamp, service, trace ids and any job
context bound by the dispatcher around a handler run.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace
from structlog.types import Processor

from jobqueue.config import get_settings

# Libraries whose INFO output drowns out job lifecycle lines
_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "asyncio")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the current span's trace and span ids, if a span is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _service_processor(service: str) -> Processor:
    def add_service(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service)
        return event_dict

    return add_service


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structured logging for workers, maintenance loops and the admin API.

    Args:
        level: Override for ``log_level``.
        log_format: Override for ``log_format`` (json or console).
    """
    settings = get_settings()

    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    log_format = log_format or settings.log_format

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        _service_processor(settings.otel_service_name),
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def job_log_context(**fields: Any) -> Iterator[None]:
    """
    Bind fields to every log line emitted inside the block.

    The binding lives in a context variable, so concurrent dispatcher slots
    (separate asyncio tasks) never see each other's job ids.

    Example:
        with job_log_context(job_id=job.id, attempt=job.attempt_count):
            await handler(job.payload)
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield
