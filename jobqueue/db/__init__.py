"""
Database module.
Contains database connection management and table models for the SQL store.
"""

from jobqueue.db.connection import create_engine, create_session_factory, init_db
from jobqueue.db.models import Base, JobRecord, QueueEntry

__all__ = [
    "create_engine",
    "create_session_factory",
    "init_db",
    "Base",
    "JobRecord",
    "QueueEntry",
]
