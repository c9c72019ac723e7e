"""
Exception hierarchy for the job queue.

Infrastructure failures (``StoreUnavailable``) are transient and retried by
the component that hit them. Job-level failures (``HandlerError``,
``LeaseExpired``) are routed to the retry policy and end either in a
requeue or a dead-letter entry. ``InvalidArgument`` and
``AlreadyRegistered`` are raised synchronously to callers and never reach
the store.
"""

from __future__ import annotations

from jobqueue.constants import LEASE_EXPIRED_ERROR

__all__ = [
    "JobQueueError",
    "StoreUnavailable",
    "StoreConflict",
    "NotFound",
    "InvalidArgument",
    "AlreadyRegistered",
    "HandlerError",
    "LeaseExpired",
    "AttemptsExhausted",
]


class JobQueueError(RuntimeError):
    """Base exception for all job queue failures."""


class StoreUnavailable(JobQueueError):
    """Raised when the ordered store cannot be reached; always transient."""


class StoreConflict(JobQueueError):
    """Raised when an id is pushed while it still lives in another collection."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"job {job_id} is in {current}, cannot push to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class NotFound(JobQueueError):
    """Raised when a job body or collection entry does not exist."""

    def __init__(self, job_id: str, where: str = "store") -> None:
        super().__init__(f"job {job_id} not found in {where}")
        self.job_id = job_id
        self.where = where


class InvalidArgument(JobQueueError, ValueError):
    """Raised when enqueue or register inputs are rejected."""


class AlreadyRegistered(JobQueueError):
    """Raised when a second handler is registered for the same job type."""

    def __init__(self, job_type: str) -> None:
        super().__init__(f"handler already registered for job type: {job_type}")
        self.job_type = job_type


class HandlerError(JobQueueError):
    """Failure reported or raised by a job handler."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class LeaseExpired(JobQueueError):
    """Synthesized by the reaper for a job whose lease ran out."""

    def __init__(self, job_id: str) -> None:
        super().__init__(LEASE_EXPIRED_ERROR)
        self.job_id = job_id


class AttemptsExhausted(JobQueueError):
    """Terminal: the job used all of its attempts and was dead-lettered."""

    def __init__(self, job_id: str, attempts: int, last_error: str | None) -> None:
        super().__init__(f"job {job_id} exhausted {attempts} attempts: {last_error}")
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
