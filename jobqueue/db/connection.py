"""
Database connection management.
Handles async SQLAlchemy engine and session creation for the SQL store.
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jobqueue.config import Settings, get_settings
from jobqueue.db.models import Base

logger = logging.getLogger(__name__)


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """
    Create the async database engine.

    Args:
        settings: Settings to use. Defaults to the cached application settings.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.log_level == "DEBUG",
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory used by the SQL store."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(
    engine: AsyncEngine,
    create_schema: bool = False,
) -> async_sessionmaker[AsyncSession]:
    """
    Prepare the database for the SQL store.

    Args:
        engine: The engine to initialize.
        create_schema: Create missing tables directly instead of relying on
            Alembic migrations (development and tests).

    Returns:
        The session factory.
    """
    if create_schema:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created")

    logger.info("Database connection initialized")
    return create_session_factory(engine)
