"""Tests for the audit service."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ServiceContext
from models import AuditLogType
from schemas import AuditLogFilter
from services.audit_service import (
    MAX_ACTION_LENGTH,
    MAX_DETAILS_LENGTH,
    cleanup_old_logs,
    get_audit_logs,
    log_event,
    log_system_event,
)
from tests.factories import AuditLogFactory, UserFactory, create_async

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


class TestLogEvent:
    async def test_attributes_event_to_context(self, db_session: AsyncSession):
        user = await create_async(UserFactory, db_session)
        ctx = ServiceContext(user_id=user.id, ip_address="10.0.0.8")

        entry = await log_event(db_session, "User Login", "Signed in", ctx=ctx)

        assert entry.user_id == user.id
        assert entry.ip_address == "10.0.0.8"
        assert entry.log_type is AuditLogType.USER_ACTION

    async def test_system_event_without_context(self, db_session: AsyncSession):
        entry = await log_system_event(db_session, "Database Backup Created", "b.zip")

        assert entry.user_id is None
        assert entry.log_type is AuditLogType.SYSTEM_EVENT

    async def test_truncates_long_values(self, db_session: AsyncSession):
        entry = await log_event(db_session, "a" * 400, "d" * 5000)

        assert len(entry.action) == MAX_ACTION_LENGTH
        assert len(entry.details) == MAX_DETAILS_LENGTH

    async def test_does_not_commit(self, db_session: AsyncSession):
        await log_event(db_session, "User Login")
        await db_session.rollback()

        page = await get_audit_logs(db_session)

        assert page.total == 0


class TestGetAuditLogs:
    async def test_page_reports_total_and_more(self, db_session: AsyncSession):
        for hours_ago in range(5):
            await create_async(
                AuditLogFactory, db_session, timestamp=NOW - timedelta(hours=hours_ago)
            )

        page = await get_audit_logs(db_session, AuditLogFilter(limit=2))

        assert page.total == 5
        assert len(page.items) == 2
        assert page.has_more is True
        assert page.items[0].timestamp == NOW

    async def test_filters_by_type(self, db_session: AsyncSession):
        await create_async(AuditLogFactory, db_session, log_type=AuditLogType.ERROR)
        await create_async(AuditLogFactory, db_session)

        page = await get_audit_logs(
            db_session, AuditLogFilter(log_type=AuditLogType.ERROR)
        )

        assert page.total == 1
        assert page.items[0].log_type is AuditLogType.ERROR
        assert page.has_more is False


class TestCleanupOldLogs:
    async def test_deletes_only_old_logs(self, db_session: AsyncSession):
        await create_async(AuditLogFactory, db_session, timestamp=NOW - timedelta(days=100))
        await create_async(AuditLogFactory, db_session, timestamp=NOW - timedelta(days=10))

        deleted = await cleanup_old_logs(db_session, 90, now=NOW)

        assert deleted == 1
        assert (await get_audit_logs(db_session)).total == 1

    @pytest.mark.parametrize("retention_days", [0, -5])
    async def test_rejects_non_positive_retention(self, db_session, retention_days):
        with pytest.raises(ValueError, match="retention_days"):
            await cleanup_old_logs(db_session, retention_days)
