"""Database engine, session, and schema management.

Dialects:
- SQLite (aiosqlite): single-user desktop install, also used by the tests
- PostgreSQL (asyncpg): shared server install
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite does not enforce foreign keys unless explicitly enabled."""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()

    engine_kwargs: dict = {"echo": settings.db_echo}
    if settings.is_sqlite:
        # SQLite doesn't support connection pooling
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_pool_max_overflow,
            pool_pre_ping=True,
        )

    engine = create_async_engine(settings.database_url, **engine_kwargs)

    if settings.is_sqlite:
        enable_sqlite_foreign_keys(engine)

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Auto-commits on success, rolls back on exception.

    Notes:
        - Use flush() if you need auto-generated IDs mid-operation
        - Services that own their transaction (restore, import) commit themselves
    """
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            try:
                await session.rollback()
            except Exception as rollback_err:
                logger.warning("db.rollback.failed", extra={"error": str(rollback_err)})
            raise


async def init_db(engine: AsyncEngine) -> None:
    """Create tables that don't exist yet.

    Production schemas are managed via Alembic; this is for first-run
    desktop installs and tests.
    """
    import models  # noqa: F401  (registers tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db.schema.ready")


async def dispose_engine(engine: AsyncEngine) -> None:
    await engine.dispose()
    logger.info("db.engine.disposed")


async def check_db_connection(db: AsyncSession) -> bool:
    """Verify database is reachable (30s timeout)."""
    try:
        async with asyncio.timeout(30):
            await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("db.connectivity.failed", extra={"error": str(e)})
        return False


def get_alembic_config(database_url: str | None = None):
    """Alembic config pointing at clubmgmt/alembic, usable from any cwd."""
    from alembic.config import Config

    root = Path(__file__).resolve().parents[1]
    cfg = Config(str(root / "alembic.ini"))
    cfg.set_main_option("script_location", str(root / "alembic"))
    if database_url:
        cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def run_migrations(database_url: str | None = None, target: str = "head") -> None:
    """Upgrade the schema synchronously; call via asyncio.to_thread from async code."""
    from alembic import command

    command.upgrade(get_alembic_config(database_url), target)
    logger.info("db.migrations.applied", extra={"target": target})
