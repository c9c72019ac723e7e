"""
Ordered store interface.

The store is the single source of truth for queue state and the only
resource shared between workers. It holds a job-body table keyed by job id
and a set of ordered collections; every id has at most one collection entry
at any time. All cross-worker coordination goes through the atomic
operations defined here (``claim_next``, ``pop_due_scheduled``,
``remove_inflight``, ``move_job``).

Any method may raise ``StoreUnavailable``.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from jobqueue.constants import Collection
from jobqueue.types.job import Job


class OrderedStore(ABC):
    """Abstract ordered store backing a job queue."""

    # Job bodies

    @abstractmethod
    async def save_job(self, job: Job) -> None:
        """Insert or overwrite a job body."""

    @abstractmethod
    async def load_job(self, job_id: str) -> Job:
        """
        Load a job body.

        Raises:
            NotFound: If no body exists for the id.
        """

    @abstractmethod
    async def delete_job(self, job_id: str) -> None:
        """Delete a job body and any collection entry it still has."""

    # Active collections

    @abstractmethod
    async def push_waiting(self, job_id: str) -> None:
        """Append an id to the waiting collection. No-op if already waiting."""

    @abstractmethod
    async def push_scheduled(self, job_id: str, not_before: datetime) -> None:
        """Insert an id into the scheduled collection ordered by not_before."""

    @abstractmethod
    async def claim_next(
        self,
        timeout: float,
        lease_duration: float,
    ) -> tuple[str, datetime] | None:
        """
        Atomically move the head of waiting into in-flight.

        The lease starts when the id is taken, not when the call started, so
        time spent blocked on an empty queue never shortens it. Blocks for
        up to ``timeout`` seconds while waiting is empty.

        Returns:
            The claimed job id and its lease expiry, or None on timeout.
        """

    @abstractmethod
    async def pop_due_scheduled(self, now: datetime) -> list[str]:
        """Atomically remove and return every scheduled id with score <= now."""

    @abstractmethod
    async def remove_inflight(
        self,
        job_id: str,
        lease_expires_at: datetime | None = None,
    ) -> None:
        """
        Remove an id from the in-flight collection.

        Args:
            job_id: The job id.
            lease_expires_at: When given, the entry is only removed if its
                score still equals this lease.

        Raises:
            NotFound: If the id is not in flight or holds a different lease.
        """

    @abstractmethod
    async def move_job(
        self,
        job: Job,
        source: Collection,
        target: Collection,
        score: datetime | None = None,
        lease_expires_at: datetime | None = None,
    ) -> None:
        """
        Move a job's entry between collections and save its body, as one step.

        Either both happen or neither does, so a failure never leaves the job
        outside every collection.

        Args:
            job: The job body to save.
            source: Collection the entry must currently be in.
            target: Collection to move it to.
            score: Score in ``target``. Required for every collection but waiting.
            lease_expires_at: When given, the move only happens if the
                in-flight score still equals this lease.

        Raises:
            NotFound: If the entry is not in ``source`` or holds a different lease.
        """

    @abstractmethod
    async def scan_inflight(self) -> list[tuple[str, datetime]]:
        """Return every in-flight (job_id, lease_expires_at) pair."""

    # Terminal collections

    @abstractmethod
    async def push_dead_letter(self, job_id: str, at: datetime) -> None:
        """Record an id in the dead-letter collection."""

    @abstractmethod
    async def list_dead_letters(self, limit: int) -> list[str]:
        """Return up to ``limit`` dead-lettered ids, oldest first."""

    @abstractmethod
    async def remove_dead_letter(self, job_id: str) -> None:
        """
        Remove an id from the dead-letter collection.

        Raises:
            NotFound: If the id is not dead-lettered.
        """

    @abstractmethod
    async def push_completed(self, job_id: str, at: datetime) -> None:
        """Record an id in the completed log."""

    @abstractmethod
    async def prune_completed(self, before: datetime) -> int:
        """Delete completed log entries (and bodies) older than ``before``."""

    # Introspection

    @abstractmethod
    async def counts(self) -> dict[Collection, int]:
        """Number of entries in each collection."""

    async def close(self) -> None:
        """Release any resources held by the store."""
