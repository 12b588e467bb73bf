"""Shared pytest fixtures for all test suites."""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from backend.billing.config import Settings
from backend.billing.db.engine import create_session_factory
from backend.billing.db.inmemory import (
    InMemoryCacheInvalidator,
    InMemoryRlsChannel,
    InMemoryTaskDispatcher,
)
from backend.billing.db.models import Base
from backend.billing.db.seed_dev import Seeder
from backend.billing.db.sql_repositories import (
    DatabaseKeyVerifier,
    DatabaseSessionProvider,
    SqlAlchemyTransactionRunner,
)
from backend.billing.transactions.engine import TransactionEngine


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with all tables created.

    A file (rather than :memory:) lets every session see the same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(sqlite_engine)


@pytest.fixture
def rls_channel() -> InMemoryRlsChannel:
    return InMemoryRlsChannel()


@pytest.fixture
def cache_invalidator() -> InMemoryCacheInvalidator:
    return InMemoryCacheInvalidator()


@pytest.fixture
def task_dispatcher() -> InMemoryTaskDispatcher:
    return InMemoryTaskDispatcher()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(environment="test", redis_url=None)


@pytest.fixture
def transaction_engine(
    session_factory: async_sessionmaker[AsyncSession],
    rls_channel: InMemoryRlsChannel,
    cache_invalidator: InMemoryCacheInvalidator,
    task_dispatcher: InMemoryTaskDispatcher,
    test_settings: Settings,
) -> TransactionEngine:
    """Engine over SQLite with in-memory RLS channel and sinks."""
    return TransactionEngine(
        SqlAlchemyTransactionRunner(session_factory),
        session_factory=session_factory,
        cache_invalidator=cache_invalidator,
        task_dispatcher=task_dispatcher,
        key_verifier=DatabaseKeyVerifier(session_factory),
        session_provider=DatabaseSessionProvider(session_factory),
        rls_channel_factory=lambda session: rls_channel,
        settings=test_settings,
    )


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    return Seeder(session_factory)


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string.
    Tests using this fixture should be marked with @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    # Ensure it's a postgres URL
    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    # Convert to async driver if needed
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def postgres_session(postgres_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create async session for PostgreSQL integration tests."""
    async with AsyncSession(postgres_engine) as session:
        yield session
        await session.rollback()
