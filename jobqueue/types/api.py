"""
Admin API response type definitions.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from jobqueue.constants import JobState
from jobqueue.types.job import Job, JobSummary


class JobResponse(BaseModel):
    """Full job details response. The payload itself is not echoed."""

    id: str
    type: str
    state: JobState
    attempt_count: int
    max_attempts: int
    payload_size: int
    not_before: datetime
    lease_expires_at: datetime | None
    last_error: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            type=job.type,
            state=job.state,
            attempt_count=job.attempt_count,
            max_attempts=job.max_attempts,
            payload_size=len(job.payload),
            not_before=job.not_before,
            lease_expires_at=job.lease_expires_at,
            last_error=job.last_error,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )


class DeadLetterListResponse(BaseModel):
    """Dead-lettered jobs, oldest first."""

    jobs: list[JobSummary]
    count: int


class RequeueResponse(BaseModel):
    """Response body after requeueing a dead-lettered job."""

    id: str
    state: JobState
    attempt_count: int
    message: str = "Job queued for retry"


class StatsResponse(BaseModel):
    """Number of jobs per collection."""

    counts: dict[str, int]
    total: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store: str
    timestamp: datetime
    slots: dict[int, datetime] = Field(
        default_factory=dict, description="Last heartbeat of each dispatcher slot"
    )
    stale_slots: list[int] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
