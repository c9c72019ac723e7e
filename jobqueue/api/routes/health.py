"""
Health check routes.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import Response

from jobqueue import __version__
from jobqueue.api.dependencies import OptionalDispatcher, Queue
from jobqueue.errors import JobQueueError
from jobqueue.observability.metrics import get_metrics
from jobqueue.queue import JobQueue
from jobqueue.types.api import HealthResponse
from jobqueue.types.job import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _store_status(queue: JobQueue) -> str:
    try:
        await queue.store.counts()
    except JobQueueError as e:
        logger.warning(f"Store health check failed: {e}")
        return "unhealthy"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the store and of any in-process dispatcher slots.",
)
async def health_check(queue: Queue, dispatcher: OptionalDispatcher) -> HealthResponse:
    """
    Perform a health check.

    Checks store connectivity and slot heartbeats, and returns service status.

    Returns:
        HealthResponse with service status.
    """
    store_status = await _store_status(queue)
    now = utcnow()

    slots = dispatcher.heartbeats() if dispatcher else {}
    stale = dispatcher.stale_slots(now) if dispatcher else []

    healthy = store_status == "healthy" and not stale
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=__version__,
        store=store_status,
        timestamp=now,
        slots=slots,
        stale_slots=stale,
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(queue: Queue) -> dict:
    """
    Kubernetes readiness check endpoint.

    Returns:
        Ready status.
    """
    return {"ready": await _store_status(queue) == "healthy"}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """
    Kubernetes liveness check endpoint.

    Returns:
        Alive status.
    """
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
