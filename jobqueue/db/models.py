"""
SQLAlchemy database models.
Defines the job body table and the ordered collection table used by the SQL store.
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Identity,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.constants import Collection, JobState
from jobqueue.types.job import Job


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class JobRecord(Base):
    """
    Job body table, keyed by job id.

    Bodies are written before their id is indexed in ``queue_entries`` so a
    dispatcher never claims an id it cannot resolve.
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")

    state: Mapped[JobState] = mapped_column(
        Enum(JobState, name="job_state", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobState.WAITING,
        index=True,
    )

    # Retry tracking
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Scheduling and leases
    not_before: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @staticmethod
    def values_from(job: Job) -> dict:
        """Column values for a job body."""
        return {
            "id": job.id,
            "type": job.type,
            "payload": job.payload,
            "state": job.state,
            "attempt_count": job.attempt_count,
            "max_attempts": job.max_attempts,
            "last_error": job.last_error,
            "not_before": job.not_before,
            "lease_expires_at": job.lease_expires_at,
            "created_at": job.created_at,
            "updated_at": job.updated_at,
            "completed_at": job.completed_at,
        }

    def to_job(self) -> Job:
        """Convert the row into a job record."""
        return Job(
            id=self.id,
            type=self.type,
            payload=self.payload,
            state=JobState(self.state),
            attempt_count=self.attempt_count,
            max_attempts=self.max_attempts,
            last_error=self.last_error,
            not_before=self.not_before,
            lease_expires_at=self.lease_expires_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
            completed_at=self.completed_at,
        )

    def __repr__(self) -> str:
        return (
            f"JobRecord(id={self.id}, type={self.type}, "
            f"state={self.state}, attempt={self.attempt_count}/{self.max_attempts})"
        )


class QueueEntry(Base):
    """
    Ordered collection membership.

    One row per job id, so an id can never sit in two collections at once.
    ``seq`` orders the waiting collection (FIFO); ``score`` orders the
    scheduled (not_before), in-flight (lease expiry), dead-letter and
    completed collections.
    """

    __tablename__ = "queue_entries"

    job_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        primary_key=True,
    )
    collection: Mapped[Collection] = mapped_column(
        Enum(Collection, name="queue_collection", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    score: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    seq: Mapped[int] = mapped_column(BigInteger, Identity(), nullable=False)

    __table_args__ = (
        Index("ix_queue_entries_collection_score", "collection", "score"),
        Index("ix_queue_entries_collection_seq", "collection", "seq"),
    )

    def __repr__(self) -> str:
        return f"QueueEntry(job_id={self.job_id}, collection={self.collection}, score={self.score})"
