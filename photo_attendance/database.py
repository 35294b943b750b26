import threading
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from photo_attendance.config import settings
from photo_attendance.utils.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None
_init_lock = threading.Lock()


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine, _sessionmaker
    if _engine is not None:
        return _engine

    with _init_lock:
        if _engine is None:
            if not settings.DATABASE_URL:
                raise RuntimeError("DATABASE_URL is not configured")
            _engine = create_async_engine(
                settings.DATABASE_URL,
                echo=settings.DEBUG,
                pool_pre_ping=True,  # Handles lost connections gracefully
            )
            # expire_on_commit=False is CRITICAL for async usage.
            _sessionmaker = async_sessionmaker(
                bind=_engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
            logger.info("Database engine created for %s", settings.DATABASE_URL.split("@")[-1])
        return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    get_engine()
    if _sessionmaker is None:
        raise RuntimeError("Database was shut down while the session factory was requested")
    return _sessionmaker


async def shutdown_database() -> None:
    global _engine, _sessionmaker
    with _init_lock:
        engine, _engine, _sessionmaker = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")


# Dependency Injection for FastAPI
# This yields a session for each request and closes it automatically after.
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_sessionmaker()() as session:
        try:
            yield session
        finally:
            await session.close()
