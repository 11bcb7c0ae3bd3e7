"""Pytest configuration and shared fixtures.

This module provides:
- In-memory SQLite (aiosqlite) engine and session per test
- Settings pointing backups and temp files at a per-test directory
- Settings cache reset between tests
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers tables on Base.metadata)
from core.config import Settings, clear_settings_cache
from core.database import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def _clear_settings():
    """Clear lru_cache between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "club_data"


@pytest.fixture
def test_settings(data_dir: Path) -> Settings:
    """Settings with backups under tmp_path; .env files are ignored."""
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        data_dir=str(data_dir),
    )


# =============================================================================
# Database Fixtures
# =============================================================================


async def create_test_engine() -> AsyncEngine:
    """Fresh in-memory database with all tables and foreign keys enforced."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine]:
    """Create a fresh in-memory database engine for each test."""
    engine = await create_test_engine()
    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Provide a database session for each test.

    Restore and import commit on their own, so isolation comes from the
    per-test engine rather than an outer rollback.
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def empty_session() -> AsyncGenerator[AsyncSession]:
    """Session on a second, empty database, used as a restore target."""
    engine = await create_test_engine()
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session
    await engine.dispose()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: tests that need no database")
    config.addinivalue_line(
        "markers", "integration: tests that touch the database and the filesystem"
    )
