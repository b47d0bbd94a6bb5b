"""
Async SQLAlchemy engine and session management for PaySync.

The engine is created lazily so tests and scripts can swap DATABASE_URL before
first use. expire_on_commit=False keeps ORM rows readable after commit; routes and
workers read event and sync log fields after committing them.
"""
import logging
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine = None
_async_session_factory = None


class Base(DeclarativeBase):
    pass


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from src.config import get_settings
        settings = get_settings()
        engine_kwargs = {"echo": settings.app_env == "development"}
        if not settings.database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                # Workers hold the pool for days; drop connections the server closed
                pool_pre_ping=True,
            )
        _engine = create_async_engine(settings.database_url, **engine_kwargs)
    return _engine


def _get_session_factory():
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            _get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _async_session_factory


def async_session_factory() -> AsyncSession:
    """New session for workers and background tasks (outside a request)."""
    return _get_session_factory()()


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _async_session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Request session rolled back: %s", str(e))
            await session.rollback()
            raise
