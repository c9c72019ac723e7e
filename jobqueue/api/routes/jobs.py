"""
Job inspection and dead-letter routes.
"""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from jobqueue.api.dependencies import Queue
from jobqueue.errors import NotFound
from jobqueue.types.api import (
    DeadLetterListResponse,
    JobResponse,
    RequeueResponse,
    StatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Jobs"])


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Queue statistics",
    description="Number of jobs in each collection.",
)
async def get_stats(queue: Queue) -> StatsResponse:
    counts = await queue.stats()
    return StatsResponse(
        counts={str(collection): count for collection, count in counts.items()},
        total=sum(counts.values()),
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Retrieve details of a specific job by ID.",
)
async def get_job(job_id: str, queue: Queue) -> JobResponse:
    """
    Get job details.

    Raises:
        HTTPException: If the job does not exist or was pruned.
    """
    try:
        job = await queue.get_job(job_id)
    except NotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return JobResponse.from_job(job)


@router.get(
    "/dead-letters",
    response_model=DeadLetterListResponse,
    summary="List dead-lettered jobs",
    description="List jobs that exhausted their attempts, oldest first.",
)
async def list_dead_letters(
    queue: Queue,
    limit: int = Query(default=50, ge=1, le=1000),
) -> DeadLetterListResponse:
    jobs = await queue.list_dead_letters(limit)
    return DeadLetterListResponse(jobs=jobs, count=len(jobs))


@router.post(
    "/dead-letters/{job_id}/requeue",
    response_model=RequeueResponse,
    summary="Requeue a dead-lettered job",
    description="Move a dead-lettered job back to waiting with a fresh attempt budget.",
)
async def requeue_dead_letter(job_id: str, queue: Queue) -> RequeueResponse:
    """
    Requeue a job from the dead-letter collection.

    Raises:
        HTTPException: If the job is not dead-lettered.
    """
    try:
        job = await queue.requeue_dead_letter(job_id)
    except NotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} is not dead-lettered",
        )

    logger.info("Job requeued via admin API", extra={"job_id": job_id})
    return RequeueResponse(id=job.id, state=job.state, attempt_count=job.attempt_count)
