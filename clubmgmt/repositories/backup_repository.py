"""Table-level operations used by backup, restore, export and import."""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import Base
from models import AuditLog
from repositories.utils import log_slow_query

T = TypeVar("T", bound=Base)


class BackupRepository:
    """Whole-table reads and writes. Does NOT commit; caller owns the transaction."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @log_slow_query("backup.list_all")
    async def list_all(self, model: type[T]) -> Sequence[T]:
        result = await self.db.execute(select(model).order_by(model.id))
        return result.scalars().all()

    @log_slow_query("backup.list_created_between")
    async def list_created_between(
        self,
        model: type[T],
        column_name: str,
        *,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
    ) -> Sequence[T]:
        """Rows whose `column_name` falls inside [from_time, to_time]."""
        column = getattr(model, column_name)
        query = select(model).order_by(model.id)
        if from_time is not None:
            query = query.where(column >= from_time)
        if to_time is not None:
            query = query.where(column <= to_time)
        result = await self.db.execute(query)
        return result.scalars().all()

    @log_slow_query("backup.list_audit_logs_since")
    async def list_audit_logs_since(self, cutoff: datetime) -> Sequence[AuditLog]:
        result = await self.db.execute(
            select(AuditLog).where(AuditLog.timestamp >= cutoff).order_by(AuditLog.id)
        )
        return result.scalars().all()

    async def count(self, model: type[Base]) -> int:
        result = await self.db.execute(select(func.count()).select_from(model))
        return result.scalar_one()

    @log_slow_query("backup.delete_all")
    async def delete_all(self, model: type[Base]) -> int:
        """Delete every row of `model` with a single statement."""
        result = await self.db.execute(
            delete(model).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    @log_slow_query("backup.insert_rows")
    async def insert_rows(
        self, model: type[Base], rows: Iterable[dict[str, Any]]
    ) -> int:
        """Add rows (primary keys included) and flush so children can reference them."""
        instances = [model(**row) for row in rows]
        if not instances:
            return 0
        self.db.add_all(instances)
        await self.db.flush()
        return len(instances)

    async def reset_id_sequence(self, model: type[Base]) -> None:
        """Move a PostgreSQL serial sequence past explicitly inserted ids.

        No-op on other dialects (SQLite picks max(rowid) + 1 on its own).
        """
        bind = self.db.get_bind()
        dialect = bind.dialect.name if bind else ""
        if dialect != "postgresql":
            return

        table = model.__tablename__
        await self.db.execute(
            text(
                "SELECT setval(pg_get_serial_sequence(:table, 'id'), "
                f"COALESCE((SELECT MAX(id) FROM {table}), 0) + 1, false)"
            ),
            {"table": table},
        )
