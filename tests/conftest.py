"""Shared pytest fixtures for all test suites."""

import os
from collections.abc import AsyncGenerator, Iterator
from dataclasses import dataclass, field

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from backend.ragchat.api.deps import get_chunk_store, get_settings_store, get_thread_store
from backend.ragchat.db.inmemory import (
    InMemoryChunkStore,
    InMemorySettingsStore,
    InMemoryThreadStore,
)
from backend.ragchat.db.models import Base
from backend.ragchat.main import app


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string.
    Tests using this fixture should be marked with @pytest.mark.postgres.

    Usage:
        @pytest.mark.postgres
        async def test_something(postgres_engine):
            async with AsyncSession(postgres_engine) as session:
                # ... test code
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

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Cleanup: drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def postgres_session(postgres_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create async session for PostgreSQL integration tests.

    Usage:
        @pytest.mark.postgres
        async def test_something(postgres_session):
            result = await postgres_session.execute(...)
    """
    async with AsyncSession(postgres_engine) as session:
        yield session
        await session.rollback()


@dataclass
class InMemoryStores:
    """Stores backing the API in route tests."""

    threads: InMemoryThreadStore = field(default_factory=InMemoryThreadStore)
    chunks: InMemoryChunkStore = field(default_factory=InMemoryChunkStore)
    settings: InMemorySettingsStore = field(default_factory=InMemorySettingsStore)


@pytest.fixture
def stores() -> InMemoryStores:
    return InMemoryStores()


@pytest.fixture
def api_client(stores: InMemoryStores) -> Iterator[TestClient]:
    """Test client with SQL stores replaced by in-memory ones."""
    app.dependency_overrides[get_thread_store] = lambda: stores.threads
    app.dependency_overrides[get_chunk_store] = lambda: stores.chunks
    app.dependency_overrides[get_settings_store] = lambda: stores.settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
