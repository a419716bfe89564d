"""Async database engine and session management."""
import logging
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from marketwatcher.config import Config
from marketwatcher.marketdata.models import Base

logger = logging.getLogger(__name__)

# Guard engine creation so importing this module without a DB driver does not fail.
try:
    engine = create_async_engine(
        Config.DATABASE_URL,
        echo=False,
        pool_pre_ping=True,
    )

    # Create async session factory
    AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
except Exception as e:  # pragma: no cover - only triggered without drivers
    logger.warning("Unable to create async DB engine at import time: %s", e)
    engine = None
    AsyncSessionLocal = None


async def init_db() -> None:
    """Create the ohlc and ohlc_filled tables if they do not exist."""
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
