"""Tests for the ordered restorer.

Ordering is checked against a recording fake repository; atomicity and the
round trip run against in-memory SQLite.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from models import AuditLog, Club, Event, EventParticipant, Report, Setting, User
from repositories.backup_repository import BackupRepository
from schemas import DatabaseSnapshot
from services.backup_errors import RestoreError
from services.restore_service import restore_snapshot
from services.snapshot_service import build_snapshot
from tests.factories import ClubFactory, create_async, seed_club_data

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)

DELETE_ORDER = [
    "audit_logs",
    "settings",
    "reports",
    "event_participants",
    "events",
    "users",
    "clubs",
]
INSERT_ORDER = list(reversed(DELETE_ORDER))


async def _table_counts(db: AsyncSession) -> dict[str, int]:
    repo = BackupRepository(db)
    return {
        model.__tablename__: await repo.count(model)
        for model in (Club, User, Event, EventParticipant, Report, Setting, AuditLog)
    }


class RecordingRepository:
    """Stands in for BackupRepository and records the calls made on it."""

    calls: list[tuple[str, str]] = []
    fail_on: tuple[str, str] | None = None

    def __init__(self, db) -> None:
        self.db = db

    async def _record(self, op: str, model) -> None:
        self.calls.append((op, model.__tablename__))
        if self.fail_on == (op, model.__tablename__):
            raise RuntimeError(f"forced failure on {op} {model.__tablename__}")

    async def delete_all(self, model) -> int:
        await self._record("delete", model)
        return 0

    async def insert_rows(self, model, rows) -> int:
        await self._record("insert", model)
        return len(list(rows))

    async def reset_id_sequence(self, model) -> None:
        await self._record("reset", model)


@pytest.fixture
def recording_repo():
    RecordingRepository.calls = []
    RecordingRepository.fail_on = None
    with patch("services.restore_service.BackupRepository", RecordingRepository):
        yield RecordingRepository


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db


@pytest.mark.unit
class TestRestoreOrdering:
    async def test_deletes_children_first_then_inserts_parents_first(
        self, recording_repo, mock_db
    ):
        await restore_snapshot(mock_db, DatabaseSnapshot(created_at=NOW, version="1.0"))

        deletes = [table for op, table in recording_repo.calls if op == "delete"]
        inserts = [table for op, table in recording_repo.calls if op == "insert"]
        assert deletes == DELETE_ORDER
        assert inserts == INSERT_ORDER

    async def test_all_deletes_happen_before_any_insert(self, recording_repo, mock_db):
        await restore_snapshot(mock_db, DatabaseSnapshot(created_at=NOW, version="1.0"))

        ops = [op for op, _table in recording_repo.calls]
        assert ops.index("insert") > max(
            i for i, op in enumerate(ops) if op == "delete"
        )
        mock_db.commit.assert_awaited_once()
        mock_db.rollback.assert_not_awaited()

    async def test_failure_rolls_back_and_stops(self, recording_repo, mock_db):
        recording_repo.fail_on = ("insert", "events")

        with pytest.raises(RestoreError) as exc_info:
            await restore_snapshot(
                mock_db, DatabaseSnapshot(created_at=NOW, version="1.0")
            )

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert recording_repo.calls[-1] == ("insert", "events")
        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()


class TestRestoreAgainstDatabase:
    async def test_round_trip_counts_match_snapshot(
        self, db_session: AsyncSession, empty_session: AsyncSession
    ):
        await seed_club_data(db_session, clubs=3, users=10, events=5, reports=0)
        snapshot = await build_snapshot(db_session, now=NOW)

        restored = await restore_snapshot(empty_session, snapshot)

        assert restored == snapshot.collection_sizes()
        counts = await _table_counts(empty_session)
        assert counts["clubs"] == 3
        assert counts["users"] == 10
        assert counts["events"] == 5
        assert counts["reports"] == 0

    async def test_restored_rows_keep_ids_and_links(
        self, db_session: AsyncSession, empty_session: AsyncSession
    ):
        seeded = await seed_club_data(db_session, clubs=2, users=4, events=2)
        snapshot = await build_snapshot(db_session, now=NOW)

        await restore_snapshot(empty_session, snapshot)

        users = await BackupRepository(empty_session).list_all(User)
        assert [(u.id, u.club_id, u.email) for u in users] == [
            (u.id, u.club_id, u.email) for u in seeded["users"]
        ]

    async def test_replaces_existing_rows(self, db_session: AsyncSession):
        await seed_club_data(db_session, clubs=2, users=2, events=1)
        snapshot = await build_snapshot(db_session, now=NOW)
        await create_async(ClubFactory, db_session, name="Added After Backup")
        await db_session.commit()

        await restore_snapshot(db_session, snapshot)

        clubs = await BackupRepository(db_session).list_all(Club)
        assert "Added After Backup" not in {club.name for club in clubs}
        assert len(clubs) == 2

    async def test_new_rows_after_restore_get_fresh_ids(
        self, db_session: AsyncSession, empty_session: AsyncSession
    ):
        await seed_club_data(db_session, clubs=3, users=3, events=0)
        snapshot = await build_snapshot(db_session, now=NOW)
        await restore_snapshot(empty_session, snapshot)

        club = await create_async(ClubFactory, empty_session)

        assert club.id > max(record.id for record in snapshot.clubs)

    async def test_failed_event_insert_leaves_store_unchanged(
        self, db_session: AsyncSession, monkeypatch
    ):
        await seed_club_data(db_session, clubs=2, users=3, events=2)
        snapshot = await build_snapshot(db_session, now=NOW)
        await create_async(ClubFactory, db_session, name="Added After Backup")
        await db_session.commit()
        before = await _table_counts(db_session)

        original_insert = BackupRepository.insert_rows

        async def failing_insert(self, model, rows):
            if model is Event:
                raise RuntimeError("forced event insert failure")
            return await original_insert(self, model, rows)

        monkeypatch.setattr(BackupRepository, "insert_rows", failing_insert)

        with pytest.raises(RestoreError) as exc_info:
            await restore_snapshot(db_session, snapshot)

        assert "forced event insert failure" in str(exc_info.value.__cause__)
        assert await _table_counts(db_session) == before
        clubs = await BackupRepository(db_session).list_all(Club)
        assert "Added After Backup" in {club.name for club in clubs}

    async def test_constraint_violation_is_wrapped(self, empty_session: AsyncSession):
        from schemas import UserRecord

        orphan = UserRecord(
            id=1,
            full_name="Orphan",
            email="orphan@university.edu",
            password_hash="x",
            club_id=999,
            created_at=NOW,
        )
        snapshot = DatabaseSnapshot(created_at=NOW, version="1.0", users=[orphan])

        with pytest.raises(RestoreError):
            await restore_snapshot(empty_session, snapshot)

        assert (await _table_counts(empty_session))["users"] == 0
