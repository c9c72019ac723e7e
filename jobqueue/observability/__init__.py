"""
Observability module.
Contains logging, metrics, tracing setup and the queue hooks.
"""

from jobqueue.observability.hooks import (
    CompositeHooks,
    EventHooks,
    MetricsHooks,
    QueueHooks,
    default_hooks,
)
from jobqueue.observability.logging import job_log_context, setup_logging
from jobqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from jobqueue.observability.tracing import job_span, setup_tracing

__all__ = [
    "setup_logging",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "job_span",
    "QueueHooks",
    "MetricsHooks",
    "EventHooks",
    "CompositeHooks",
    "default_hooks",
]
