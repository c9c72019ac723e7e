"""Initial schema with job bodies and queue entries

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enums using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_state AS ENUM (
                'waiting', 'scheduled', 'in_flight', 'completed', 'failed', 'dead_lettered'
            );
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.execute("""
        DO $$ BEGIN
            CREATE TYPE queue_collection AS ENUM (
                'waiting', 'scheduled', 'in_flight', 'dead_letter', 'completed'
            );
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Job bodies
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(255), nullable=False),
        sa.Column("payload", sa.LargeBinary, nullable=False),
        sa.Column(
            "state",
            postgresql.ENUM(
                "waiting", "scheduled", "in_flight", "completed", "failed", "dead_lettered",
                name="job_state",
                create_type=False,
            ),
            nullable=False,
            server_default="waiting",
        ),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("not_before", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_jobs_type", "jobs", ["type"])
    op.create_index("ix_jobs_state", "jobs", ["state"])

    # Collection membership, one row per job id
    op.create_table(
        "queue_entries",
        sa.Column("job_id", sa.String(64), nullable=False),
        sa.Column(
            "collection",
            postgresql.ENUM(
                "waiting", "scheduled", "in_flight", "dead_letter", "completed",
                name="queue_collection",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("score", sa.DateTime(timezone=True), nullable=True),
        sa.Column("seq", sa.BigInteger, sa.Identity(), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("job_id"),
    )

    op.create_index("ix_queue_entries_collection_score", "queue_entries", ["collection", "score"])
    op.create_index("ix_queue_entries_collection_seq", "queue_entries", ["collection", "seq"])

    # Partial index for claiming the head of the waiting collection
    op.execute("""
        CREATE INDEX ix_queue_entries_waiting_head
        ON queue_entries (seq)
        WHERE collection = 'waiting'
    """)


def downgrade() -> None:
    # Drop indexes
    op.execute("DROP INDEX IF EXISTS ix_queue_entries_waiting_head")
    op.drop_index("ix_queue_entries_collection_seq")
    op.drop_index("ix_queue_entries_collection_score")
    op.drop_index("ix_jobs_state")
    op.drop_index("ix_jobs_type")

    # Drop tables
    op.drop_table("queue_entries")
    op.drop_table("jobs")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS queue_collection")
    op.execute("DROP TYPE IF EXISTS job_state")
