"""Async database engine and session factory"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from contract_engine.config import settings


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Build the async engine; pooling options only apply to server databases"""
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url)

    # Connection pool: recycle after 1 hour to avoid stale connections
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_recycle=3600,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Loaded records are converted to domain objects, so they may outlive the commit
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back and re-raise on any failure"""
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
