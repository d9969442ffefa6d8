"""Database connection and session management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rcti_engine.config import get_settings
from rcti_engine.errors import PersistenceError, RctiError
from rcti_engine.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Create async database engine."""
    url = database_url or get_settings().database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(
    engine: AsyncEngine | None = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize database engine and session factory.

    Passing an engine replaces the global one (used by tests).
    """
    global _engine, _session_factory
    if engine is not None or _engine is None:
        _engine = engine or get_engine()
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine, _session_factory


def async_session_factory() -> AsyncSession:
    """Open a new session from the global factory."""
    _, factory = init_db()
    return factory()


@asynccontextmanager
async def atomic(
    session: AsyncSession, failure_message: str
) -> AsyncGenerator[AsyncSession, None]:
    """Run one unit of work: commit on success, roll back everything on error.

    Domain errors propagate unchanged. Database errors are logged and
    re-raised as PersistenceError carrying ``failure_message``.
    """
    try:
        yield session
        await session.commit()
    except RctiError:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception(failure_message)
        raise PersistenceError(failure_message) from exc
    except Exception:
        await session.rollback()
        raise


async def create_schema(engine: AsyncEngine | None = None) -> None:
    """Create any missing tables for the RCTI models."""
    target = engine or init_db()[0]
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ready", extra={"tables": sorted(Base.metadata.tables)})
