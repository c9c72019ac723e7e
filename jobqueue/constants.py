"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - SCHEDULED -> WAITING (sweeper, once not_before is due)
    - WAITING -> IN_FLIGHT (dispatcher claim)
    - IN_FLIGHT -> COMPLETED (handler success)
    - IN_FLIGHT -> SCHEDULED (failure or lease expiry, attempts remain)
    - IN_FLIGHT -> DEAD_LETTERED (attempts exhausted or unrecoverable error)
    - DEAD_LETTERED -> WAITING (manual operator requeue)

    FAILED is only carried by events; a stored job never rests in it.
    """

    WAITING = "waiting"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


class Collection(StrEnum):
    """Ordered collections held by the store."""

    WAITING = "waiting"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    DEAD_LETTER = "dead_letter"
    COMPLETED = "completed"


# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_LEASE_DURATION_SECONDS = 30
LEASE_EXPIRED_ERROR = "lease expired"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_IN_FLIGHT = "jobs_in_flight"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOBS_FAILED = "jobs_failed_total"
METRIC_JOBS_DEAD_LETTERED = "jobs_dead_lettered_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LEASE_EXPIRED = "lease_expired_total"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"
METRIC_STORE_ERRORS = "store_errors_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_RETRY_JOB = "retry_job"
SPAN_REAP_LEASES = "reap_leases"

# Job event types
EVENT_JOB_ENQUEUED = "job.enqueued"
EVENT_JOB_STARTED = "job.started"
EVENT_JOB_COMPLETED = "job.completed"
EVENT_JOB_FAILED = "job.failed"
EVENT_JOB_DEAD_LETTERED = "job.dead_lettered"
EVENT_LEASE_EXPIRED = "job.lease_expired"
