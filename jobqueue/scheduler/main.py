"""
Scheduler sweeper for promoting due jobs.

The sweeper runs periodically, moves scheduled jobs whose ``not_before``
has passed into the waiting collection, prunes the completed log, and
publishes collection depths.
"""

import asyncio
import logging
import signal
from datetime import datetime, timedelta

from jobqueue.config import get_settings
from jobqueue.constants import JobState
from jobqueue.errors import JobQueueError, NotFound, StoreConflict
from jobqueue.observability.hooks import QueueHooks, default_hooks
from jobqueue.observability.logging import setup_logging
from jobqueue.store import create_store
from jobqueue.store.base import OrderedStore
from jobqueue.store.retry import retry_store_call
from jobqueue.types.job import utcnow

logger = logging.getLogger(__name__)


class Sweeper:
    """
    Scheduled-job sweeper.

    Runs periodically to:
    1. Pop every scheduled job that is due
    2. Mark it waiting and push it to the waiting collection
    3. Prune completed jobs past their retention
    4. Report collection depths to the hooks

    Ids popped from the scheduled collection that could not be promoted are
    kept in memory and retried first on the next sweep.
    """

    def __init__(
        self,
        store: OrderedStore,
        interval_seconds: float | None = None,
        completed_retention_seconds: float | None = None,
        hooks: QueueHooks | None = None,
    ):
        """
        Initialize the sweeper.

        Args:
            store: The ordered store.
            interval_seconds: Seconds between sweeps.
            completed_retention_seconds: Age after which completed jobs are pruned.
            hooks: Observability hooks.
        """
        settings = get_settings()
        self._store = store
        self.interval = (
            interval_seconds if interval_seconds is not None else settings.sweep_interval_seconds
        )
        self.completed_retention_seconds = (
            completed_retention_seconds
            if completed_retention_seconds is not None
            else settings.completed_retention_seconds
        )
        self._hooks = hooks or default_hooks()
        self._pending: list[str] = []
        self._running = False

    @property
    def pending(self) -> list[str]:
        """Ids awaiting a promotion retry."""
        return list(self._pending)

    async def start(self) -> None:
        """Start the sweeper loop."""
        logger.info(f"Sweeper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                promoted = await self.run_once()

                if promoted > 0:
                    logger.info(f"Promoted {promoted} scheduled jobs")

            except Exception as e:
                logger.exception(f"Error in sweeper loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Sweeper stopped")

    async def stop(self) -> None:
        """Stop the sweeper."""
        logger.info("Sweeper stopping")
        self._running = False

    async def run_once(self, now: datetime | None = None) -> int:
        """
        Run one sweep.

        Args:
            now: Sweep time. Defaults to the current time.

        Returns:
            Number of jobs promoted to waiting.
        """
        now = now or utcnow()

        due = await retry_store_call(self._store.pop_due_scheduled, now, operation="pop_due_scheduled")
        # Only take the carried-over ids once the pop succeeded; they are in no collection
        retry_ids, self._pending = self._pending, []

        promoted = 0
        for job_id in [*retry_ids, *due]:
            if await self._promote(job_id, now):
                promoted += 1

        await self._prune(now)
        await self._report_depth()
        return promoted

    async def _promote(self, job_id: str, now: datetime) -> bool:
        try:
            job = await retry_store_call(self._store.load_job, job_id, operation="load_job")
        except NotFound:
            logger.error("Scheduled job has no body; dropping entry", extra={"job_id": job_id})
            return False
        except JobQueueError as e:
            logger.error(
                "Failed to load scheduled job; will retry next sweep",
                extra={"job_id": job_id, "error": str(e)}
            )
            self._pending.append(job_id)
            return False

        if job.state not in (JobState.SCHEDULED, JobState.WAITING):
            logger.warning(
                "Scheduled entry for a job that already moved on; dropping",
                extra={"job_id": job_id, "state": job.state.value}
            )
            return False

        try:
            if job.state != JobState.WAITING:
                job.state = JobState.WAITING
                job.updated_at = now
                await retry_store_call(self._store.save_job, job, operation="save_job")
            await retry_store_call(self._store.push_waiting, job_id, operation="push_waiting")
        except StoreConflict as e:
            logger.warning(
                "Promoted job is already in another collection",
                extra={"job_id": job_id, "collection": e.current}
            )
            return False
        except JobQueueError as e:
            logger.error(
                "Failed to promote scheduled job; will retry next sweep",
                extra={"job_id": job_id, "error": str(e)}
            )
            self._pending.append(job_id)
            return False

        logger.debug("Promoted scheduled job", extra={"job_id": job_id})
        return True

    async def _prune(self, now: datetime) -> None:
        before = now - timedelta(seconds=self.completed_retention_seconds)
        try:
            await retry_store_call(self._store.prune_completed, before, operation="prune_completed")
        except JobQueueError as e:
            logger.warning(f"Failed to prune completed jobs: {e}")

    async def _report_depth(self) -> None:
        try:
            counts = await retry_store_call(self._store.counts, operation="counts")
        except JobQueueError as e:
            logger.warning(f"Failed to read queue depth: {e}")
            return
        self._hooks.on_depth(counts)


async def run_async() -> None:
    """Run a standalone sweeper."""
    setup_logging()
    store = await create_store()

    sweeper = Sweeper(store)

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(sweeper.stop())
        )

    try:
        await sweeper.start()
    finally:
        await store.close()


def run() -> None:
    """Run the sweeper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
