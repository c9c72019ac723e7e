"""
Producer and operator entry point for a job queue.

``JobQueue`` creates jobs and gives operators access to dead-lettered work.
It does not execute anything; see ``jobqueue.worker.main.Dispatcher``.
"""

import logging
import math
from datetime import datetime, timedelta

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_ENQUEUE_JOB, Collection, JobState
from jobqueue.errors import InvalidArgument, NotFound
from jobqueue.observability.hooks import QueueHooks, default_hooks
from jobqueue.observability.tracing import job_span
from jobqueue.store.base import OrderedStore
from jobqueue.store.retry import retry_store_call
from jobqueue.types.job import Job, JobSummary, new_job_id, utcnow

logger = logging.getLogger(__name__)


def _delay_seconds(delay: float | timedelta) -> float:
    if isinstance(delay, timedelta):
        return delay.total_seconds()
    if isinstance(delay, bool) or not isinstance(delay, (int, float)):
        raise InvalidArgument(f"delay must be seconds or a timedelta, got {type(delay).__name__}")
    return float(delay)


class JobQueue:
    """
    Enqueue API and dead-letter inspection.

    Every store call goes through ``retry_store_call`` so a transient store
    outage delays the caller instead of losing the job.
    """

    def __init__(
        self,
        store: OrderedStore,
        default_max_attempts: int | None = None,
        hooks: QueueHooks | None = None,
    ):
        """
        Initialize the queue.

        Args:
            store: The ordered store.
            default_max_attempts: Attempts used when enqueue gives none.
            hooks: Observability hooks.
        """
        settings = get_settings()
        self._store = store
        self.default_max_attempts = (
            default_max_attempts
            if default_max_attempts is not None
            else settings.default_max_attempts
        )
        self._hooks = hooks or default_hooks()

    @property
    def store(self) -> OrderedStore:
        return self._store

    async def enqueue(
        self,
        type: str,
        payload: bytes,
        delay: float | timedelta = 0,
        max_attempts: int | None = None,
    ) -> str:
        """
        Create a job and make it visible to dispatchers.

        The body is written before the id is pushed into a collection, so a
        dispatcher can never claim an id it cannot load.

        Args:
            type: Job type selecting the handler.
            payload: Opaque job payload.
            delay: Seconds (or timedelta) before the job may run.
            max_attempts: Attempts before dead-lettering. Defaults to
                ``default_max_attempts``.

        Returns:
            The new job id.

        Raises:
            InvalidArgument: If the type is empty, the payload is not bytes,
                the delay is negative, or max_attempts < 1.
        """
        if not isinstance(type, str) or not type.strip():
            raise InvalidArgument("job type must be a non-empty string")
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise InvalidArgument(f"payload must be bytes, got {payload.__class__.__name__}")

        seconds = _delay_seconds(delay)
        if seconds < 0 or not math.isfinite(seconds):
            raise InvalidArgument("delay must be a finite, non-negative duration")

        attempts = self.default_max_attempts if max_attempts is None else max_attempts
        if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
            raise InvalidArgument("max_attempts must be an integer >= 1")

        now = utcnow()
        job = Job(
            id=new_job_id(),
            type=type,
            payload=bytes(payload),
            state=JobState.WAITING if seconds == 0 else JobState.SCHEDULED,
            max_attempts=attempts,
            not_before=now + timedelta(seconds=seconds),
            created_at=now,
            updated_at=now,
        )

        with job_span(SPAN_ENQUEUE_JOB, job, delay_seconds=seconds):

            await retry_store_call(self._store.save_job, job, operation="save_job")
            if job.state == JobState.WAITING:
                await retry_store_call(self._store.push_waiting, job.id, operation="push_waiting")
            else:
                await retry_store_call(
                    self._store.push_scheduled, job.id, job.not_before, operation="push_scheduled"
                )

        logger.info(
            "Enqueued job",
            extra={"job_id": job.id, "job_type": job.type, "state": job.state.value}
        )
        self._hooks.on_enqueued(job)
        return job.id

    async def get_job(self, job_id: str) -> Job:
        """
        Load a job by id.

        Raises:
            NotFound: If the job does not exist (or was pruned).
        """
        return await retry_store_call(self._store.load_job, job_id, operation="load_job")

    async def list_dead_letters(self, limit: int = 50) -> list[JobSummary]:
        """
        List dead-lettered jobs, oldest first.

        Args:
            limit: Maximum number of summaries to return.

        Returns:
            Job summaries for operator inspection.
        """
        if limit < 1:
            raise InvalidArgument("limit must be >= 1")

        job_ids = await retry_store_call(
            self._store.list_dead_letters, limit, operation="list_dead_letters"
        )

        summaries = []
        for job_id in job_ids:
            try:
                job = await self.get_job(job_id)
            except NotFound:
                logger.error("Dead-letter entry without job body", extra={"job_id": job_id})
                continue
            summaries.append(job.summary())
        return summaries

    async def requeue_dead_letter(self, job_id: str, now: datetime | None = None) -> Job:
        """
        Move a dead-lettered job back to waiting with a fresh attempt budget.

        Args:
            job_id: The dead-lettered job.
            now: Requeue time. Defaults to the current time.

        Returns:
            The requeued job.

        Raises:
            NotFound: If the job is not dead-lettered.
        """
        now = now or utcnow()

        job = await self.get_job(job_id)
        job.state = JobState.WAITING
        job.attempt_count = 0
        job.last_error = None
        job.completed_at = None
        job.lease_expires_at = None
        job.not_before = now
        job.updated_at = now

        await retry_store_call(
            self._store.move_job,
            job,
            Collection.DEAD_LETTER,
            Collection.WAITING,
            operation="move_job",
        )

        logger.info("Job requeued from dead-letter", extra={"job_id": job_id})
        self._hooks.on_enqueued(job)
        return job

    async def stats(self) -> dict[Collection, int]:
        """Number of jobs in each collection."""
        counts = await retry_store_call(self._store.counts, operation="counts")
        self._hooks.on_depth(counts)
        return counts
