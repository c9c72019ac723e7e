"""
Event type definitions for job lifecycle notifications.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from jobqueue.constants import (
    EVENT_JOB_COMPLETED,
    EVENT_JOB_DEAD_LETTERED,
    EVENT_JOB_ENQUEUED,
    EVENT_JOB_FAILED,
    EVENT_JOB_STARTED,
    EVENT_LEASE_EXPIRED,
    JobState,
)
from jobqueue.types.job import Job, utcnow


class JobEvent(BaseModel):
    """
    Event emitted when job state changes.
    Delivered to subscribers of ``EventHooks``.
    """

    event_type: str
    job_id: str
    job_type: str
    state: JobState
    attempt: int
    timestamp: datetime
    data: dict[str, Any] | None = None

    @classmethod
    def _for(
        cls,
        event_type: str,
        job: Job,
        state: JobState,
        data: dict[str, Any] | None = None,
    ) -> "JobEvent":
        return cls(
            event_type=event_type,
            job_id=job.id,
            job_type=job.type,
            state=state,
            attempt=job.attempt_count,
            timestamp=utcnow(),
            data=data,
        )

    @classmethod
    def job_enqueued(cls, job: Job) -> "JobEvent":
        """Create a job enqueued event."""
        return cls._for(
            EVENT_JOB_ENQUEUED,
            job,
            job.state,
            {"not_before": job.not_before.isoformat(), "max_attempts": job.max_attempts},
        )

    @classmethod
    def job_started(cls, job: Job, worker_id: str) -> "JobEvent":
        """Create a job started event."""
        return cls._for(EVENT_JOB_STARTED, job, JobState.IN_FLIGHT, {"worker_id": worker_id})

    @classmethod
    def job_completed(cls, job: Job, duration_seconds: float) -> "JobEvent":
        """Create a job completed event."""
        return cls._for(
            EVENT_JOB_COMPLETED,
            job,
            JobState.COMPLETED,
            {"duration_seconds": duration_seconds},
        )

    @classmethod
    def job_failed(cls, job: Job, error: str, will_retry: bool) -> "JobEvent":
        """Create a job failed event."""
        return cls._for(
            EVENT_JOB_FAILED,
            job,
            JobState.SCHEDULED if will_retry else JobState.FAILED,
            {
                "error": error,
                "will_retry": will_retry,
                "not_before": job.not_before.isoformat() if will_retry else None,
            },
        )

    @classmethod
    def job_dead_lettered(cls, job: Job) -> "JobEvent":
        """Create a job moved to dead-letter event."""
        return cls._for(
            EVENT_JOB_DEAD_LETTERED,
            job,
            JobState.DEAD_LETTERED,
            {"error": job.last_error, "total_attempts": job.attempt_count},
        )

    @classmethod
    def lease_expired(cls, job: Job) -> "JobEvent":
        """Create a lease expired event."""
        return cls._for(
            EVENT_LEASE_EXPIRED,
            job,
            JobState.IN_FLIGHT,
            {"lease_expires_at": job.lease_expires_at.isoformat() if job.lease_expires_at else None},
        )
