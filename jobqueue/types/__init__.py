"""
Type definitions for the job queue.
Contains the job record, handler results, and lifecycle events.
"""

from jobqueue.types.events import JobEvent
from jobqueue.types.job import (
    Job,
    JobResult,
    JobSummary,
    LeaseInfo,
    new_job_id,
    utcnow,
)

__all__ = [
    # Job types
    "Job",
    "JobResult",
    "JobSummary",
    "LeaseInfo",
    "new_job_id",
    "utcnow",
    # Event types
    "JobEvent",
]
