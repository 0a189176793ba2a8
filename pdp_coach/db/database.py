"""Database connection and session management."""
import logging
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pdp_coach.config.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def create_engine(url: str | None = None) -> AsyncEngine:
    """Create an async engine; pooling options only apply to server databases."""
    url = url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.database_echo, future=True)
    return create_async_engine(
        url,
        echo=settings.database_echo,
        future=True,
        pool_size=10,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=300,
        pool_pre_ping=True,
    )


def configure_database(url: str | None = None) -> async_sessionmaker:
    """(Re)bind the module-level engine and session maker."""
    global _engine, _session_maker
    _engine = create_engine(url)
    _session_maker = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    return _session_maker


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_database()
    return _engine


def get_session_maker() -> async_sessionmaker:
    if _session_maker is None:
        configure_database()
    return _session_maker


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency that provides a database session committed on success."""
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create tables for all registered models."""
    # Import models so they register on Base.metadata
    from pdp_coach.models import coach_notification, scheduled_task, workout_log  # noqa: F401

    engine = get_engine()
    if str(engine.url).startswith("sqlite"):
        async with engine.connect() as conn:
            await conn.execute(text("PRAGMA busy_timeout=30000"))
            await conn.commit()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


async def close_engine() -> None:
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None
