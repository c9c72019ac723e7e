"""
Lease reaper for recovering expired job leases.

The reaper runs periodically to find in-flight jobs whose lease has
expired and routes them through the retry policy. This handles worker
crashes and hung handlers and ensures at-least-once delivery.
"""

import asyncio
import logging
import signal
from datetime import datetime

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_REAP_LEASES, Collection, JobState
from jobqueue.errors import JobQueueError, LeaseExpired, NotFound
from jobqueue.observability.hooks import QueueHooks, default_hooks
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.tracing import job_span
from jobqueue.store import create_store
from jobqueue.store.base import OrderedStore
from jobqueue.store.retry import retry_store_call
from jobqueue.types.job import utcnow
from jobqueue.worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers expired job leases.

    Runs periodically to:
    1. Scan in-flight entries for expired leases
    2. Hand jobs that still hold the expired lease to the retry policy
    3. Put back jobs whose claimer died before recording the attempt
    4. Drop in-flight entries that have no job body
    """

    def __init__(
        self,
        store: OrderedStore,
        retry_policy: RetryPolicy | None = None,
        interval_seconds: float | None = None,
        hooks: QueueHooks | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            store: The ordered store.
            retry_policy: Policy for expired attempts.
            interval_seconds: Seconds between reaper runs. Defaults to half
                the lease duration.
            hooks: Observability hooks.
        """
        settings = get_settings()
        self._store = store
        self.interval = (
            interval_seconds
            if interval_seconds is not None
            else settings.effective_reaper_interval_seconds
        )
        self._hooks = hooks or default_hooks()
        self._retry_policy = retry_policy or RetryPolicy(store, hooks=self._hooks)
        self._running = False

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                recovered = await self.run_once()

                if recovered > 0:
                    logger.info(f"Recovered {recovered} expired leases")

            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self, now: datetime | None = None) -> int:
        """
        Run the reaper once (for testing or cron-style execution).

        Args:
            now: Reap time. Defaults to the current time.

        Returns:
            Number of jobs recovered.
        """
        now = now or utcnow()

        with job_span(SPAN_REAP_LEASES) as span:
            entries = await retry_store_call(self._store.scan_inflight, operation="scan_inflight")
            expired = [(job_id, lease) for job_id, lease in entries if lease < now]
            span.set_attribute("expired", len(expired))

            recovered = 0
            for job_id, lease in expired:
                try:
                    if await self._recover(job_id, lease, now):
                        recovered += 1
                except JobQueueError as e:
                    logger.error(
                        "Failed to recover expired lease; will retry next run",
                        extra={"job_id": job_id, "error": str(e)}
                    )

        return recovered

    async def _recover(self, job_id: str, lease: datetime, now: datetime) -> bool:
        try:
            job = await retry_store_call(self._store.load_job, job_id, operation="load_job")
        except NotFound:
            logger.error("In-flight job has no body; dropping entry", extra={"job_id": job_id})
            await self._remove_entry(job_id, lease)
            return False

        if job.state == JobState.IN_FLIGHT and job.lease_expires_at == lease:
            logger.warning(
                "Lease expired",
                extra={"job_id": job.id, "attempt": job.attempt_count, "lease_expires_at": str(lease)}
            )
            self._hooks.on_lease_expired(job)
            state = await self._retry_policy.handle_failure(job, str(LeaseExpired(job.id)), now=now)
            return state is not None

        if job.state == JobState.WAITING:
            # Claimed but the attempt was never recorded; put it back untouched.
            try:
                await retry_store_call(
                    self._store.move_job,
                    job,
                    Collection.IN_FLIGHT,
                    Collection.WAITING,
                    lease_expires_at=lease,
                    operation="move_job",
                )
            except NotFound:
                logger.info("In-flight entry already moved", extra={"job_id": job_id})
                return False
            logger.warning("Returned unstarted claim to waiting", extra={"job_id": job_id})
            return True

        logger.debug(
            "Expired entry no longer matches the job; skipping",
            extra={"job_id": job_id, "state": job.state.value}
        )
        return False

    async def _remove_entry(self, job_id: str, lease: datetime) -> bool:
        try:
            await retry_store_call(
                self._store.remove_inflight, job_id, lease, operation="remove_inflight"
            )
        except NotFound:
            logger.info("In-flight entry already removed", extra={"job_id": job_id})
            return False
        return True


async def run_async() -> None:
    """Run a standalone reaper."""
    setup_logging()
    store = await create_store()

    reaper = Reaper(store)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await store.close()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
