"""
In-process ordered store.

Backs a queue whose producers and workers share one event loop (tests,
single-process deployments). Every mutation runs without an intervening
``await`` once the condition lock is held, which is what makes
``claim_next`` and ``pop_due_scheduled`` indivisible here.
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta

from jobqueue.constants import Collection
from jobqueue.errors import InvalidArgument, NotFound, StoreConflict
from jobqueue.store.base import OrderedStore
from jobqueue.types.job import Job, utcnow

logger = logging.getLogger(__name__)

_SCORED = (
    Collection.SCHEDULED,
    Collection.IN_FLIGHT,
    Collection.DEAD_LETTER,
    Collection.COMPLETED,
)


class MemoryStore(OrderedStore):
    """
    Ordered store held in process memory.

    Job bodies are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._membership: dict[str, Collection] = {}
        self._waiting: OrderedDict[str, None] = OrderedDict()
        self._scored: dict[Collection, dict[str, datetime]] = {c: {} for c in _SCORED}
        self._cond = asyncio.Condition()

    # Job bodies

    async def save_job(self, job: Job) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def load_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(job_id, "jobs")
        return job.model_copy(deep=True)

    async def delete_job(self, job_id: str) -> None:
        async with self._cond:
            self._jobs.pop(job_id, None)
            self._discard(job_id)

    # Active collections

    async def push_waiting(self, job_id: str) -> None:
        async with self._cond:
            if self._enter(job_id, Collection.WAITING):
                self._waiting[job_id] = None
                self._cond.notify()

    async def push_scheduled(self, job_id: str, not_before: datetime) -> None:
        async with self._cond:
            self._enter(job_id, Collection.SCHEDULED)
            self._scored[Collection.SCHEDULED][job_id] = not_before

    async def claim_next(
        self,
        timeout: float,
        lease_duration: float,
    ) -> tuple[str, datetime] | None:
        async with self._cond:
            if not self._waiting:
                try:
                    await asyncio.wait_for(
                        self._cond.wait_for(lambda: bool(self._waiting)),
                        timeout=max(timeout, 0),
                    )
                except TimeoutError:
                    return None

            job_id, _ = self._waiting.popitem(last=False)
            lease_expires_at = utcnow() + timedelta(seconds=lease_duration)
            self._membership[job_id] = Collection.IN_FLIGHT
            self._scored[Collection.IN_FLIGHT][job_id] = lease_expires_at
            return job_id, lease_expires_at

    async def pop_due_scheduled(self, now: datetime) -> list[str]:
        async with self._cond:
            scheduled = self._scored[Collection.SCHEDULED]
            due = sorted(
                (score, job_id) for job_id, score in scheduled.items() if score <= now
            )
            for _, job_id in due:
                del scheduled[job_id]
                del self._membership[job_id]
            return [job_id for _, job_id in due]

    async def remove_inflight(
        self,
        job_id: str,
        lease_expires_at: datetime | None = None,
    ) -> None:
        async with self._cond:
            self._leave(job_id, Collection.IN_FLIGHT, lease_expires_at)

    async def move_job(
        self,
        job: Job,
        source: Collection,
        target: Collection,
        score: datetime | None = None,
        lease_expires_at: datetime | None = None,
    ) -> None:
        if target != Collection.WAITING and score is None:
            raise InvalidArgument(f"moving to {target} needs a score")

        async with self._cond:
            self._leave(job.id, source, lease_expires_at)
            self._jobs[job.id] = job.model_copy(deep=True)
            self._membership[job.id] = target
            if target == Collection.WAITING:
                self._waiting[job.id] = None
                self._cond.notify()
            else:
                self._scored[target][job.id] = score

    async def scan_inflight(self) -> list[tuple[str, datetime]]:
        return sorted(
            self._scored[Collection.IN_FLIGHT].items(),
            key=lambda item: item[1],
        )

    # Terminal collections

    async def push_dead_letter(self, job_id: str, at: datetime) -> None:
        async with self._cond:
            self._enter(job_id, Collection.DEAD_LETTER)
            self._scored[Collection.DEAD_LETTER][job_id] = at

    async def list_dead_letters(self, limit: int) -> list[str]:
        entries = sorted(
            self._scored[Collection.DEAD_LETTER].items(),
            key=lambda item: item[1],
        )
        return [job_id for job_id, _ in entries[:limit]]

    async def remove_dead_letter(self, job_id: str) -> None:
        async with self._cond:
            self._leave(job_id, Collection.DEAD_LETTER)

    async def push_completed(self, job_id: str, at: datetime) -> None:
        async with self._cond:
            self._enter(job_id, Collection.COMPLETED)
            self._scored[Collection.COMPLETED][job_id] = at

    async def prune_completed(self, before: datetime) -> int:
        async with self._cond:
            completed = self._scored[Collection.COMPLETED]
            expired = [job_id for job_id, at in completed.items() if at < before]
            for job_id in expired:
                del completed[job_id]
                del self._membership[job_id]
                self._jobs.pop(job_id, None)
            return len(expired)

    # Introspection

    async def counts(self) -> dict[Collection, int]:
        counts = {collection: len(entries) for collection, entries in self._scored.items()}
        counts[Collection.WAITING] = len(self._waiting)
        return counts

    def _enter(self, job_id: str, target: Collection) -> bool:
        """
        Record collection membership for an id.

        Returns:
            False if the id is already in the target collection.

        Raises:
            StoreConflict: If the id lives in a different collection.
        """
        current = self._membership.get(job_id)
        if current == target:
            return False
        if current is not None:
            raise StoreConflict(job_id, current, target)
        self._membership[job_id] = target
        return True

    def _leave(
        self,
        job_id: str,
        source: Collection,
        lease_expires_at: datetime | None = None,
    ) -> None:
        """Drop the entry for an id, which must be in ``source``."""
        if self._membership.get(job_id) != source:
            raise NotFound(job_id, source)

        if source == Collection.WAITING:
            del self._waiting[job_id]
        else:
            entries = self._scored[source]
            if lease_expires_at is not None and entries[job_id] != lease_expires_at:
                raise NotFound(job_id, f"{source} with lease {lease_expires_at.isoformat()}")
            del entries[job_id]
        del self._membership[job_id]

    def _discard(self, job_id: str) -> None:
        current = self._membership.pop(job_id, None)
        if current == Collection.WAITING:
            self._waiting.pop(job_id, None)
        elif current is not None:
            self._scored[current].pop(job_id, None)
