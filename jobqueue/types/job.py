"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from jobqueue.constants import JobState


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    """Generate a fresh, never reused job identifier."""
    return str(uuid4())


class Job(BaseModel):
    """
    Job record: the body stored for every unit of work.

    Ownership of mutable fields:
    - the enqueue API creates the record
    - the dispatcher sets state, attempt_count and lease_expires_at on claim
    - completion and the retry policy set state, last_error and not_before
    - the reaper acts only through the retry policy
    """

    id: str = Field(default_factory=new_job_id)
    type: str
    payload: bytes = b""
    state: JobState = JobState.WAITING
    attempt_count: int = 0
    max_attempts: int = 3
    not_before: datetime = Field(default_factory=utcnow)
    lease_expires_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def is_retryable(self) -> bool:
        """Check if another attempt is allowed."""
        return self.attempt_count < self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining attempts."""
        return max(0, self.max_attempts - self.attempt_count)

    def summary(self) -> "JobSummary":
        """Project the job into its operator-facing summary."""
        return JobSummary(
            id=self.id,
            type=self.type,
            state=self.state,
            attempt_count=self.attempt_count,
            max_attempts=self.max_attempts,
            last_error=self.last_error,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, type={self.type}, "
            f"state={self.state}, attempt={self.attempt_count}/{self.max_attempts})"
        )


class JobSummary(BaseModel):
    """
    Read-only view of a job.
    Returned by dead-letter inspection and the admin API.
    """

    id: str
    type: str
    state: JobState
    attempt_count: int
    max_attempts: int
    last_error: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    retryable: bool = True

    @classmethod
    def ok(cls, output: dict[str, Any] | None = None) -> "JobResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, retryable: bool = True) -> "JobResult":
        return cls(success=False, error=error, retryable=retryable)


@dataclass
class LeaseInfo:
    """
    Information about a job lease.
    Used by the dispatcher to track the jobs its slots are running.
    """

    job_id: str
    job_type: str
    slot: int
    lease_expires_at: datetime
    acquired_at: datetime

    @property
    def time_remaining_seconds(self) -> float:
        """Get remaining time on the lease in seconds."""
        remaining = (self.lease_expires_at - utcnow()).total_seconds()
        return max(0.0, remaining)
