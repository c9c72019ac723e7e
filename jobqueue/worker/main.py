"""
Dispatcher process for executing jobs.

The dispatcher runs a fixed pool of slots. Each slot claims one job at a
time from the waiting collection, runs its handler under the lease deadline,
and either completes the job or hands it to the retry policy.
"""

import asyncio
import logging
import os
import signal
import time
from datetime import datetime, timedelta

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB, Collection, JobState
from jobqueue.errors import NotFound
from jobqueue.observability.hooks import QueueHooks, default_hooks
from jobqueue.observability.logging import job_log_context, setup_logging
from jobqueue.observability.metrics import setup_metrics
from jobqueue.observability.tracing import job_span, setup_tracing
from jobqueue.store import create_store
from jobqueue.store.base import OrderedStore
from jobqueue.store.retry import retry_store_call
from jobqueue.types.job import Job, JobResult, LeaseInfo, utcnow
from jobqueue.worker.handlers import HandlerRegistry, register_builtin_handlers
from jobqueue.worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Worker pool that claims and executes jobs.

    Features:
    - Atomic claims through the store, so slots never share a job
    - Handler deadline equal to the remaining lease
    - Retry and dead-letter handling through ``RetryPolicy``
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        store: OrderedStore,
        registry: HandlerRegistry,
        concurrency: int | None = None,
        lease_duration: float | None = None,
        claim_timeout: float | None = None,
        worker_id: str | None = None,
        retry_policy: RetryPolicy | None = None,
        hooks: QueueHooks | None = None,
        completed_retention_seconds: float | None = None,
        shutdown_timeout: float | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            store: The ordered store.
            registry: Handlers by job type.
            concurrency: Number of slots, i.e. maximum concurrent handlers.
            lease_duration: Seconds a claimed job may run before it is reaped.
            claim_timeout: Seconds a slot blocks on an empty queue.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            retry_policy: Policy for failed attempts.
            hooks: Observability hooks.
            completed_retention_seconds: 0 deletes completed jobs at once.
            shutdown_timeout: Seconds ``stop`` waits for running handlers.
        """
        settings = get_settings()

        self._store = store
        self._registry = registry
        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.concurrency = concurrency if concurrency is not None else settings.worker_concurrency
        self.lease_duration = (
            lease_duration if lease_duration is not None else settings.worker_lease_duration_seconds
        )
        self.claim_timeout = (
            claim_timeout if claim_timeout is not None else settings.worker_claim_timeout_seconds
        )
        self.completed_retention_seconds = (
            completed_retention_seconds
            if completed_retention_seconds is not None
            else settings.completed_retention_seconds
        )
        self.shutdown_timeout = (
            shutdown_timeout
            if shutdown_timeout is not None
            else settings.worker_shutdown_timeout_seconds
        )

        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.lease_duration <= 0:
            raise ValueError("lease_duration must be positive")

        self._hooks = hooks or default_hooks()
        self._retry_policy = retry_policy or RetryPolicy(store, hooks=self._hooks)

        self._running = False
        self._slots: list[asyncio.Task] = []
        self._leases: dict[str, LeaseInfo] = {}
        self._heartbeats: dict[int, datetime] = {}

    @property
    def running(self) -> bool:
        return self._running

    @property
    def leases(self) -> list[LeaseInfo]:
        """Leases currently held by this dispatcher's slots."""
        return list(self._leases.values())

    def heartbeats(self) -> dict[int, datetime]:
        """Last time each slot went around its loop."""
        return dict(self._heartbeats)

    def stale_slots(self, now: datetime | None = None) -> list[int]:
        """
        Slots that have not gone around their loop within one lease plus
        one claim timeout, which no healthy slot should exceed.
        """
        now = now or utcnow()
        limit = timedelta(seconds=self.lease_duration + self.claim_timeout)
        return sorted(slot for slot, seen in self._heartbeats.items() if now - seen > limit)

    async def start(self) -> None:
        """Start the slots and run until stopped."""
        logger.info(
            "Dispatcher starting",
            extra={"worker_id": self.worker_id, "concurrency": self.concurrency}
        )

        self._running = True
        self._slots = [
            asyncio.create_task(self._slot_loop(slot), name=f"{self.worker_id}-slot-{slot}")
            for slot in range(self.concurrency)
        ]

        await asyncio.gather(*self._slots, return_exceptions=True)
        self._slots = []

        logger.info("Dispatcher stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """
        Stop the dispatcher gracefully.

        Slots stop claiming at once. Running handlers get up to
        ``shutdown_timeout`` seconds to finish; the rest are cancelled and
        their jobs are recovered by the reaper when the lease expires.
        """
        logger.info("Dispatcher stopping", extra={"worker_id": self.worker_id})
        self._running = False

        if not self._slots:
            return

        _, pending = await asyncio.wait(self._slots, timeout=self.shutdown_timeout)
        if pending:
            logger.warning(
                f"Cancelling {len(pending)} slots still running after shutdown timeout",
                extra={"worker_id": self.worker_id, "job_ids": list(self._leases)}
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def run_once(self) -> bool:
        """
        Claim and process at most one job on slot 0.

        Returns:
            True if a job was claimed.
        """
        return await self._process_next(0)

    async def _slot_loop(self, slot: int) -> None:
        while self._running:
            self._heartbeats[slot] = utcnow()
            try:
                await self._process_next(slot)
            except Exception as e:
                logger.exception(
                    f"Error in dispatcher slot: {e}",
                    extra={"worker_id": self.worker_id, "slot": slot}
                )
                await asyncio.sleep(self.claim_timeout)

    async def _process_next(self, slot: int) -> bool:
        with job_span(SPAN_CLAIM_JOB, worker_id=self.worker_id, slot=slot) as span:
            claimed = await retry_store_call(
                self._store.claim_next,
                self.claim_timeout,
                self.lease_duration,
                operation="claim_next",
            )
            if claimed is None:
                return False
            job_id, lease_expires_at = claimed
            span.set_attribute("job.id", job_id)

        job = await self._start_job(job_id, lease_expires_at, slot)
        if job is None:
            return True

        try:
            await self._execute_job(job)
        finally:
            self._leases.pop(job.id, None)
            self._hooks.on_in_flight(self.worker_id, len(self._leases))
        return True

    async def _start_job(self, job_id: str, lease_expires_at: datetime, slot: int) -> Job | None:
        """
        Record the claim on the job body.

        Returns:
            The in-flight job, or None if the claimed id has no body.
        """
        try:
            job = await retry_store_call(self._store.load_job, job_id, operation="load_job")
        except NotFound:
            logger.error("Claimed job has no body; dropping entry", extra={"job_id": job_id})
            try:
                await retry_store_call(
                    self._store.remove_inflight, job_id, lease_expires_at, operation="remove_inflight"
                )
            except NotFound:
                logger.debug("Orphan in-flight entry already removed", extra={"job_id": job_id})
            return None

        now = utcnow()
        job.state = JobState.IN_FLIGHT
        job.attempt_count += 1
        job.lease_expires_at = lease_expires_at
        job.updated_at = now
        await retry_store_call(self._store.save_job, job, operation="save_job")

        self._leases[job.id] = LeaseInfo(
            job_id=job.id,
            job_type=job.type,
            slot=slot,
            lease_expires_at=lease_expires_at,
            acquired_at=now,
        )
        self._hooks.on_claimed(job, self.worker_id)
        self._hooks.on_in_flight(self.worker_id, len(self._leases))
        return job

    async def _execute_job(self, job: Job) -> None:
        """
        Execute a single claimed job.

        Handles the rest of the attempt:
        1. Run the handler under the lease deadline
        2. Mark as COMPLETED, or
        3. Pass the failure to the retry policy
        """
        deadline = self._leases[job.id].time_remaining_seconds

        with job_log_context(
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempt_count,
            worker_id=self.worker_id,
        ):
            logger.info("Executing job", extra={"deadline": round(deadline, 3)})

            start_time = time.monotonic()
            with job_span(SPAN_EXECUTE_JOB, job, worker_id=self.worker_id) as span:
                try:
                    result = await asyncio.wait_for(
                        self._registry.execute(job.type, job.payload, job.id),
                        timeout=deadline,
                    )
                except TimeoutError:
                    result = JobResult.fail(f"deadline exceeded after {deadline:.3f}s")

                span.set_attribute("success", result.success)

            duration = time.monotonic() - start_time

            if result.success:
                await self._complete_job(job, duration)
                return

            logger.warning("Job failed", extra={"error": result.error})
            await self._retry_policy.handle_failure(
                job,
                result.error or "Unknown error",
                retryable=result.retryable,
                duration_seconds=duration,
            )

    async def _complete_job(self, job: Job, duration: float) -> None:
        lease_expires_at = job.lease_expires_at
        now = utcnow()
        job.state = JobState.COMPLETED
        job.lease_expires_at = None
        job.completed_at = now
        job.updated_at = now

        try:
            await retry_store_call(
                self._store.move_job,
                job,
                Collection.IN_FLIGHT,
                Collection.COMPLETED,
                now,
                lease_expires_at=lease_expires_at,
                operation="move_job",
            )
        except NotFound:
            logger.error(
                "Completed job is no longer in flight under its lease; it may run again",
                extra={"job_id": job.id, "lease_expires_at": str(lease_expires_at)}
            )
            return

        if self.completed_retention_seconds <= 0:
            # A body that survives a failed delete is pruned by the next sweep
            await retry_store_call(self._store.delete_job, job.id, operation="delete_job")

        logger.info(
            "Job completed successfully",
            extra={"job_id": job.id, "duration": f"{duration:.2f}s"}
        )
        self._hooks.on_completed(job, duration)


async def run_async() -> None:
    """Run a dispatcher, plus the sweeper and reaper when configured."""
    from jobqueue.reaper.main import Reaper
    from jobqueue.scheduler.main import Sweeper

    settings = get_settings()
    setup_logging()
    setup_metrics()
    setup_tracing()

    store = await create_store(settings)
    registry = register_builtin_handlers(HandlerRegistry())
    hooks = default_hooks()
    retry_policy = RetryPolicy(store, hooks=hooks)

    dispatcher = Dispatcher(store, registry, retry_policy=retry_policy, hooks=hooks)
    services: list = [dispatcher]
    if settings.worker_run_maintenance:
        services.append(Sweeper(store, hooks=hooks))
        services.append(Reaper(store, retry_policy=retry_policy, hooks=hooks))

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: [asyncio.create_task(service.stop()) for service in services]
        )

    try:
        await asyncio.gather(*(service.start() for service in services))
    finally:
        await store.close()


def run() -> None:
    """Run the dispatcher."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
