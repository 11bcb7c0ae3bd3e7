"""Audit log repository for database operations."""

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import Select, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import AuditLog, AuditLogType
from repositories.utils import log_slow_query
from schemas import AuditLogFilter


class AuditLogRepository:
    """Repository for AuditLog database operations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(
        self,
        *,
        action: str,
        details: str,
        log_type: AuditLogType,
        user_id: int | None = None,
        ip_address: str | None = None,
        additional_data: str | None = None,
        timestamp: datetime | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            action=action,
            details=details,
            log_type=log_type,
            user_id=user_id,
            ip_address=ip_address,
            additional_data=additional_data,
        )
        if timestamp is not None:
            entry.timestamp = timestamp
        self.db.add(entry)
        await self.db.flush()
        return entry

    @staticmethod
    def _apply_filter(query: Select, audit_filter: AuditLogFilter) -> Select:
        if audit_filter.log_type is not None:
            query = query.where(AuditLog.log_type == audit_filter.log_type)
        if audit_filter.user_id is not None:
            query = query.where(AuditLog.user_id == audit_filter.user_id)
        if audit_filter.action_contains:
            query = query.where(
                AuditLog.action.ilike(f"%{audit_filter.action_contains}%")
            )
        if audit_filter.from_time is not None:
            query = query.where(AuditLog.timestamp >= audit_filter.from_time)
        if audit_filter.to_time is not None:
            query = query.where(AuditLog.timestamp <= audit_filter.to_time)
        return query

    @log_slow_query("audit_logs.list_filtered")
    async def list_filtered(self, audit_filter: AuditLogFilter) -> Sequence[AuditLog]:
        """Newest first, paginated by limit/offset."""
        query = self._apply_filter(select(AuditLog), audit_filter)
        query = (
            query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .limit(audit_filter.limit)
            .offset(audit_filter.offset)
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def count_filtered(self, audit_filter: AuditLogFilter) -> int:
        query = self._apply_filter(
            select(func.count()).select_from(AuditLog), audit_filter
        )
        result = await self.db.execute(query)
        return result.scalar_one()

    async def count_all(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(AuditLog))
        return result.scalar_one()

    @log_slow_query("audit_logs.delete_older_than")
    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self.db.execute(
            delete(AuditLog)
            .where(AuditLog.timestamp < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
