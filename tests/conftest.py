"""
Pytest configuration and shared fixtures.

Integration tests run against TEST_DATABASE_URL when it is set (a
PostgreSQL database, to exercise FOR UPDATE SKIP LOCKED for real) and
against a throwaway SQLite file otherwise.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import timedelta
from pathlib import Path
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from jobqueue.config import get_settings
from jobqueue.db import Base, Job, db_now
from jobqueue.db.connection import create_session_factory, get_test_engine
from jobqueue.queue import JobQueueService
from jobqueue.worker.registry import HandlerRegistry

# Test database URL - use a separate test database
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None]:
    """Make every test read settings from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Get the test database URL."""
    if TEST_DATABASE_URL:
        return TEST_DATABASE_URL
    return f"sqlite+aiosqlite:///{tmp_path / 'jobqueue_test.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with a fresh schema."""
    engine = get_test_engine(database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the test engine."""
    return create_session_factory(async_engine)


@pytest.fixture
def queue(session_factory: async_sessionmaker[AsyncSession]) -> JobQueueService:
    """Create a queue service backed by the test database."""
    return JobQueueService(session_factory=session_factory)


@pytest.fixture
def registry() -> HandlerRegistry:
    """Create an empty handler registry."""
    return HandlerRegistry()


@pytest.fixture
def user_id() -> str:
    """Generate a test tenant ID."""
    return f"user-{uuid4().hex[:8]}"


@pytest.fixture
def expire_visibility(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[None]]:
    """
    Move visible_at of claimed jobs into the past.

    Simulates the visibility timeout lapsing without waiting for it.
    """
    async def expire(*job_ids: UUID) -> None:
        stmt = update(Job).values(visible_at=db_now(-1))
        if job_ids:
            stmt = stmt.where(Job.id.in_(job_ids))
        async with session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    return expire


@pytest.fixture
def age_jobs(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[None]]:
    """Move updated_at of jobs the given number of days into the past."""
    async def age(days: int, *job_ids: UUID) -> None:
        stmt = update(Job).values(updated_at=db_now(-int(timedelta(days=days).total_seconds())))
        if job_ids:
            stmt = stmt.where(Job.id.in_(job_ids))
        async with session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    return age
