"""
Retry and backoff policy for failed attempts.

Invoked with a job that still holds its in-flight lease, either by the
dispatcher after a failed handler or by the reaper after a lease expired.
``move_job`` (guarded by the lease the caller observed) decides who owns the
transition: whoever moves the entry first wins, and the other party gets
``NotFound`` and backs off. The move and the body write are one store step,
so a store outage leaves the job in flight for the reaper rather than lost.
"""

import logging
import random
from datetime import datetime, timedelta

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_RETRY_JOB, Collection, JobState
from jobqueue.errors import AttemptsExhausted, NotFound, StoreUnavailable
from jobqueue.observability.hooks import QueueHooks, default_hooks
from jobqueue.observability.tracing import job_span
from jobqueue.store.base import OrderedStore
from jobqueue.store.retry import retry_store_call
from jobqueue.types.job import Job, utcnow

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Decides whether a failed job is rescheduled with backoff or dead-lettered.

    Delay for attempt ``n`` is ``base_delay * 2 ** (n - 1)``, scaled by a
    random factor in ``[1 - jitter, 1 + jitter]`` and capped at
    ``max_delay``. With jitter below 1/3 successive delays never decrease.
    """

    def __init__(
        self,
        store: OrderedStore,
        base_delay: float | None = None,
        max_delay: float | None = None,
        jitter: float | None = None,
        hooks: QueueHooks | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the policy.

        Args:
            store: The ordered store.
            base_delay: Delay in seconds after the first failed attempt.
            max_delay: Upper bound for any delay, in seconds.
            jitter: Relative jitter, 0.2 means +/-20%.
            hooks: Observability hooks.
            rng: Random source for jitter.
        """
        settings = get_settings()

        self._store = store
        self.base_delay = base_delay if base_delay is not None else settings.retry_base_delay_seconds
        self.max_delay = max_delay if max_delay is not None else settings.retry_max_delay_seconds
        self.jitter = jitter if jitter is not None else settings.retry_jitter
        self._hooks = hooks or default_hooks()
        self._rng = rng or random.Random()

        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

    def compute_delay(self, attempt_count: int) -> float:
        """
        Backoff delay in seconds after ``attempt_count`` failed attempts.

        Args:
            attempt_count: Attempts made so far (1 after the first failure).

        Returns:
            Delay in seconds, never above ``max_delay``.
        """
        exponent = max(attempt_count, 1) - 1
        # 2 ** exponent overflows float math for very large attempt counts
        if exponent >= 64:
            return self.max_delay

        delay = self.base_delay * (2 ** exponent)
        if self.jitter:
            delay *= self._rng.uniform(1 - self.jitter, 1 + self.jitter)
        return min(delay, self.max_delay)

    async def handle_failure(
        self,
        job: Job,
        error: str,
        *,
        retryable: bool = True,
        now: datetime | None = None,
        duration_seconds: float | None = None,
    ) -> JobState | None:
        """
        Move a failed in-flight job to scheduled (with backoff) or dead-letter.

        Args:
            job: The job, as loaded while it held its lease.
            error: Error message stored in ``last_error``.
            retryable: False dead-letters the job regardless of attempts left.
            now: Transition time. Defaults to the current time.
            duration_seconds: Handler runtime, for metrics.

        Returns:
            The new state, or None if another party already moved the job.
        """
        now = now or utcnow()
        dead = not (job.is_retryable and retryable)

        lease_expires_at = job.lease_expires_at
        moved = job.model_copy(deep=True)
        moved.last_error = error
        moved.lease_expires_at = None
        moved.updated_at = now

        if dead:
            moved.state = JobState.DEAD_LETTERED
            moved.completed_at = now
            target, score = Collection.DEAD_LETTER, now
        else:
            delay = self.compute_delay(moved.attempt_count)
            moved.state = JobState.SCHEDULED
            moved.not_before = now + timedelta(seconds=delay)
            target, score = Collection.SCHEDULED, moved.not_before

        with job_span(SPAN_RETRY_JOB, job, dead_letter=dead):
            try:
                await retry_store_call(
                    self._store.move_job,
                    moved,
                    Collection.IN_FLIGHT,
                    target,
                    score,
                    lease_expires_at=lease_expires_at,
                    operation="move_job",
                )
            except NotFound:
                logger.error(
                    "Failed job is no longer in flight under its lease; already handled elsewhere",
                    extra={"job_id": job.id, "lease_expires_at": str(lease_expires_at)}
                )
                return None
            except StoreUnavailable:
                logger.error(
                    "Could not move failed job; it stays in flight until the reaper retries it",
                    extra={"job_id": job.id, "lease_expires_at": str(lease_expires_at), "error": error}
                )
                raise

        if dead:
            reason = (
                AttemptsExhausted(moved.id, moved.attempt_count, error)
                if not moved.is_retryable
                else error
            )
            logger.warning(
                f"Job moved to dead-letter after {moved.attempt_count} attempts",
                extra={"job_id": moved.id, "job_type": moved.type, "error": str(reason)}
            )
        else:
            logger.info(
                "Job scheduled for retry",
                extra={
                    "job_id": moved.id,
                    "attempt": moved.attempt_count,
                    "remaining_attempts": moved.remaining_attempts,
                    "delay_seconds": round(delay, 3),
                }
            )

        self._hooks.on_failed(moved, error, not dead, duration_seconds)
        if dead:
            self._hooks.on_dead_lettered(moved)
        return moved.state
