"""
Ordered store module.
Contains the store interface, its implementations and the transient-retry helper.
"""

from jobqueue.config import Settings, get_settings
from jobqueue.store.base import OrderedStore
from jobqueue.store.memory import MemoryStore
from jobqueue.store.retry import retry_store_call


async def create_store(settings: Settings | None = None) -> OrderedStore:
    """
    Build the store selected by ``store_backend``.

    Args:
        settings: Settings to use. Defaults to the cached application settings.

    Returns:
        OrderedStore: A memory or PostgreSQL backed store.
    """
    settings = settings or get_settings()

    if settings.store_backend == "memory":
        return MemoryStore()

    if settings.store_backend == "sql":
        from jobqueue.db import create_engine, init_db
        from jobqueue.observability.tracing import instrument_sqlalchemy
        from jobqueue.store.sql import SqlStore

        engine = create_engine(settings)
        instrument_sqlalchemy(engine)
        session_factory = await init_db(engine, create_schema=settings.database_create_schema)
        return SqlStore(
            session_factory,
            poll_interval=settings.store_poll_interval_seconds,
            engine=engine,
        )

    raise ValueError(f"Unknown store backend: {settings.store_backend}")


__all__ = [
    "OrderedStore",
    "MemoryStore",
    "create_store",
    "retry_store_call",
]
