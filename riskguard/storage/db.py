"""Async database engine and session management."""
import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from riskguard.config import Config
from riskguard.storage.models import Base

logger = logging.getLogger(__name__)

# The engine is created lazily by the driver; a missing driver in a test
# environment must not break importing this module.
try:
    engine = create_async_engine(
        Config.DATABASE_URL,
        echo=False,
        pool_pre_ping=True,
    )

    AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
except Exception as e:  # pragma: no cover - only triggered without a DB driver
    logger.warning("Unable to create async DB engine at import time: %s", e)
    engine = None
    AsyncSessionLocal = None


async def init_db() -> None:
    """Create the schema.

    Production deployments run the Alembic revisions under ``alembic/versions``;
    this keeps local SQLite and fresh databases usable without them.
    """
    if engine is None:
        raise RuntimeError("Async DB engine not configured. Install DB driver or configure DATABASE_URL.")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema initialized")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session."""
    if AsyncSessionLocal is None:
        raise RuntimeError("AsyncSessionLocal is not available; DB engine not initialized")
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def close_db() -> None:
    """Close database connection pool."""
    if engine is None:
        return
    await engine.dispose()
    logger.info("Database connections closed")
