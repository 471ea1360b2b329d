"""Integration test fixtures for the PostgreSQL store and backend."""

from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from treeline.core.backends.postgres import PostgresBackend
from treeline.core.models.config import PostgresConfig
from treeline.core.store.postgres import PostgresJobStore

# Integration tests need a reachable database; without credentials collect nothing
if not os.environ.get('DB_PASSWORD'):
    collect_ignore_glob = ['test_*.py']

DB_URL = (
    f'postgresql+psycopg://{os.environ.get("DB_USER", "postgres")}:'
    f'{os.environ.get("DB_PASSWORD", "")}@{os.environ.get("DB_HOST", "localhost")}:5432/'
    f'{os.environ.get("DB_NAME", "treeline")}'
)


@pytest.fixture(scope='session')
def db_url() -> str:
    """Database connection URL."""
    return DB_URL


@pytest_asyncio.fixture
async def store(db_url: str) -> AsyncGenerator[PostgresJobStore, None]:
    """PostgresJobStore with schema initialized and tables truncated."""
    job_store = PostgresJobStore(PostgresConfig(database_url=db_url))
    await job_store.ensure_schema_initialized()
    async with AsyncSession(job_store.async_engine) as session:
        await session.execute(
            text('TRUNCATE treeline_subjobs, treeline_workflows, treeline_tasks CASCADE')
        )
        await session.commit()
    yield job_store
    await job_store.close_async()


@pytest_asyncio.fixture
async def backend(store: PostgresJobStore) -> AsyncGenerator[PostgresBackend, None]:
    """PostgresBackend sharing the store's engine."""
    engine: AsyncEngine = store.async_engine
    yield PostgresBackend(store.config, engine=engine)
