"""Tests for the snapshot builder."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from models import SettingsScope
from services.snapshot_service import build_snapshot, snapshot_rows
from tests.factories import (
    AuditLogFactory,
    SettingFactory,
    create_async,
    seed_club_data,
)

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


class TestBuildSnapshot:
    async def test_reads_every_collection(self, db_session: AsyncSession):
        seeded = await seed_club_data(db_session, reports=2)
        await create_async(SettingFactory, db_session, key="theme")
        await db_session.commit()

        snapshot = await build_snapshot(db_session, now=NOW)

        assert snapshot.version == "1.0"
        assert snapshot.created_at == NOW
        assert snapshot.collection_sizes() == {
            "clubs": 3,
            "users": 10,
            "events": 5,
            "event_participants": 5,
            "reports": 2,
            "settings": 1,
            "audit_logs": 0,
        }
        assert [club.id for club in snapshot.clubs] == [
            club.id for club in seeded["clubs"]
        ]
        assert snapshot.settings[0].scope is SettingsScope.GLOBAL

    async def test_keeps_foreign_keys(self, db_session: AsyncSession):
        seeded = await seed_club_data(db_session, clubs=1, users=2, events=1)

        snapshot = await build_snapshot(db_session, now=NOW)

        club_id = seeded["clubs"][0].id
        assert {user.club_id for user in snapshot.users} == {club_id}
        assert snapshot.event_participants[0].event_id == seeded["events"][0].id

    async def test_audit_logs_limited_to_window(self, db_session: AsyncSession):
        for days_ago in (120, 91, 89, 1):
            await create_async(
                AuditLogFactory,
                db_session,
                action=f"{days_ago} days ago",
                timestamp=NOW - timedelta(days=days_ago),
            )

        snapshot = await build_snapshot(db_session, now=NOW)

        assert [entry.action for entry in snapshot.audit_logs] == [
            "89 days ago",
            "1 days ago",
        ]

    async def test_custom_audit_window(self, db_session: AsyncSession):
        await create_async(
            AuditLogFactory, db_session, timestamp=NOW - timedelta(days=10)
        )

        snapshot = await build_snapshot(db_session, audit_window_days=7, now=NOW)

        assert snapshot.audit_logs == []

    async def test_read_error_propagates(self, db_session: AsyncSession):
        with patch(
            "services.snapshot_service.BackupRepository.list_all",
            new=AsyncMock(side_effect=RuntimeError("disk I/O error")),
        ):
            with pytest.raises(RuntimeError, match="disk I/O error"):
                await build_snapshot(db_session, now=NOW)


@pytest.mark.unit
class TestSnapshotRows:
    def test_dumps_python_field_names(self):
        from schemas import ClubRecord, DatabaseSnapshot

        snapshot = DatabaseSnapshot(
            created_at=NOW,
            version="1.0",
            clubs=[ClubRecord(id=3, name="Film", created_date=NOW)],
        )

        assert snapshot_rows(snapshot, "clubs") == [
            {
                "id": 3,
                "name": "Film",
                "description": None,
                "is_active": True,
                "created_date": NOW,
            }
        ]
