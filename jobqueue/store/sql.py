"""
PostgreSQL ordered store.

Implements the store atomics with row-level locking so any number of worker
processes can share one queue:

- ``claim_next`` is a single ``UPDATE ... WHERE job_id IN (SELECT ... FOR
  UPDATE SKIP LOCKED LIMIT 1) RETURNING``, so two callers can never receive
  the same id.
- ``pop_due_scheduled`` is a single ``DELETE ... RETURNING`` over a
  ``SKIP LOCKED`` selection of due entries.
- ``remove_inflight`` is a conditional ``DELETE ... RETURNING``; no returned
  row means somebody else already acted on the lease.
- ``move_job`` runs that same guarded delete, the body upsert and the new
  entry insert in one transaction.
"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from jobqueue.config import get_settings
from jobqueue.constants import Collection
from jobqueue.db.models import JobRecord, QueueEntry
from jobqueue.errors import InvalidArgument, NotFound, StoreConflict, StoreUnavailable
from jobqueue.store.base import OrderedStore
from jobqueue.types.job import Job, utcnow

logger = logging.getLogger(__name__)


class SqlStore(OrderedStore):
    """
    Ordered store backed by PostgreSQL through SQLAlchemy async sessions.

    Each operation runs in its own short transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poll_interval: float | None = None,
        engine: AsyncEngine | None = None,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Factory for async sessions.
            poll_interval: Seconds between claim attempts while waiting is empty.
            engine: Engine disposed by ``close``, when the store owns it.
        """
        settings = get_settings()
        self._session_factory = session_factory
        self._engine = engine
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.store_poll_interval_seconds
        )

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession]:
        """Open a session inside a transaction, mapping connection failures."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(str(e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StoreUnavailable(str(e)) from e
            raise
        except (OSError, ConnectionError) as e:
            raise StoreUnavailable(str(e)) from e

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database connection closed")

    # Job bodies

    async def save_job(self, job: Job) -> None:
        async with self._transaction() as session:
            await session.execute(_upsert_job(job))

    async def load_job(self, job_id: str) -> Job:
        async with self._transaction() as session:
            result = await session.execute(select(JobRecord).where(JobRecord.id == job_id))
            record = result.scalar_one_or_none()
            if record is None:
                raise NotFound(job_id, "jobs")
            return record.to_job()

    async def delete_job(self, job_id: str) -> None:
        async with self._transaction() as session:
            await session.execute(delete(JobRecord).where(JobRecord.id == job_id))

    # Active collections

    async def push_waiting(self, job_id: str) -> None:
        await self._insert_entry(job_id, Collection.WAITING, None)

    async def push_scheduled(self, job_id: str, not_before: datetime) -> None:
        stmt = insert(QueueEntry).values(
            job_id=job_id,
            collection=Collection.SCHEDULED,
            score=not_before,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[QueueEntry.job_id],
            set_={"score": stmt.excluded.score},
            where=QueueEntry.collection == Collection.SCHEDULED,
        ).returning(QueueEntry.job_id)

        async with self._transaction() as session:
            result = await session.execute(stmt)
            if result.scalar_one_or_none() is None:
                current = await self._current_collection(session, job_id)
                raise StoreConflict(job_id, current or "unknown", Collection.SCHEDULED)

    async def claim_next(
        self,
        timeout: float,
        lease_duration: float,
    ) -> tuple[str, datetime] | None:
        deadline = time.monotonic() + max(timeout, 0)

        while True:
            lease_expires_at = utcnow() + timedelta(seconds=lease_duration)
            job_id = await self._claim_head(lease_expires_at)
            if job_id is not None:
                return job_id, lease_expires_at

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _claim_head(self, lease_expires_at: datetime) -> str | None:
        head = (
            select(QueueEntry.job_id)
            .where(QueueEntry.collection == Collection.WAITING)
            .order_by(QueueEntry.seq)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(QueueEntry)
            .where(QueueEntry.job_id.in_(head))
            .values(collection=Collection.IN_FLIGHT, score=lease_expires_at)
            .returning(QueueEntry.job_id)
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def pop_due_scheduled(self, now: datetime) -> list[str]:
        due = (
            select(QueueEntry.job_id)
            .where(
                QueueEntry.collection == Collection.SCHEDULED,
                QueueEntry.score <= now,
            )
            .with_for_update(skip_locked=True)
        )
        stmt = (
            delete(QueueEntry)
            .where(QueueEntry.job_id.in_(due))
            .returning(QueueEntry.job_id, QueueEntry.score)
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [row.job_id for row in sorted(rows, key=lambda row: row.score)]

    async def remove_inflight(
        self,
        job_id: str,
        lease_expires_at: datetime | None = None,
    ) -> None:
        async with self._transaction() as session:
            await _leave(session, job_id, Collection.IN_FLIGHT, lease_expires_at)

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

        # NotFound raised inside the transaction rolls the whole move back
        async with self._transaction() as session:
            await _leave(session, job.id, source, lease_expires_at)
            await session.execute(_upsert_job(job))
            await session.execute(
                insert(QueueEntry).values(job_id=job.id, collection=target, score=score)
            )

    async def scan_inflight(self) -> list[tuple[str, datetime]]:
        stmt = (
            select(QueueEntry.job_id, QueueEntry.score)
            .where(QueueEntry.collection == Collection.IN_FLIGHT)
            .order_by(QueueEntry.score)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [(row.job_id, row.score) for row in result.all()]

    # Terminal collections

    async def push_dead_letter(self, job_id: str, at: datetime) -> None:
        await self._insert_entry(job_id, Collection.DEAD_LETTER, at)

    async def list_dead_letters(self, limit: int) -> list[str]:
        stmt = (
            select(QueueEntry.job_id)
            .where(QueueEntry.collection == Collection.DEAD_LETTER)
            .order_by(QueueEntry.score)
            .limit(limit)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def remove_dead_letter(self, job_id: str) -> None:
        async with self._transaction() as session:
            await _leave(session, job_id, Collection.DEAD_LETTER)

    async def push_completed(self, job_id: str, at: datetime) -> None:
        await self._insert_entry(job_id, Collection.COMPLETED, at)

    async def prune_completed(self, before: datetime) -> int:
        expired = select(QueueEntry.job_id).where(
            QueueEntry.collection == Collection.COMPLETED,
            QueueEntry.score < before,
        )
        stmt = delete(JobRecord).where(JobRecord.id.in_(expired)).returning(JobRecord.id)

        async with self._transaction() as session:
            result = await session.execute(stmt)
            pruned = len(result.all())

        if pruned:
            logger.info(f"Pruned {pruned} completed jobs")
        return pruned

    # Introspection

    async def counts(self) -> dict[Collection, int]:
        stmt = select(QueueEntry.collection, func.count()).group_by(QueueEntry.collection)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            found = {Collection(collection): count for collection, count in result.all()}
        return {collection: found.get(collection, 0) for collection in Collection}

    async def _insert_entry(
        self,
        job_id: str,
        collection: Collection,
        score: datetime | None,
    ) -> None:
        stmt = (
            insert(QueueEntry)
            .values(job_id=job_id, collection=collection, score=score)
            .on_conflict_do_nothing(index_elements=[QueueEntry.job_id])
            .returning(QueueEntry.job_id)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            if result.scalar_one_or_none() is not None:
                return
            current = await self._current_collection(session, job_id)
            if current != collection:
                raise StoreConflict(job_id, current or "unknown", collection)

    @staticmethod
    async def _current_collection(session: AsyncSession, job_id: str) -> Collection | None:
        result = await session.execute(
            select(QueueEntry.collection).where(QueueEntry.job_id == job_id)
        )
        current = result.scalar_one_or_none()
        return Collection(current) if current is not None else None


def _upsert_job(job: Job):
    values = JobRecord.values_from(job)
    stmt = insert(JobRecord).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[JobRecord.id],
        set_={key: value for key, value in values.items() if key != "id"},
    )


async def _leave(
    session: AsyncSession,
    job_id: str,
    source: Collection,
    lease_expires_at: datetime | None = None,
) -> None:
    """Delete the entry for an id, which must be in ``source``."""
    stmt = delete(QueueEntry).where(
        QueueEntry.job_id == job_id,
        QueueEntry.collection == source,
    )
    if lease_expires_at is not None:
        stmt = stmt.where(QueueEntry.score == lease_expires_at)

    result = await session.execute(stmt.returning(QueueEntry.job_id))
    if result.scalar_one_or_none() is None:
        raise NotFound(job_id, source)
