"""Snapshot builder: reads the whole store into one versioned document."""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import get_logger
from models import AuditLog
from repositories.backup_repository import BackupRepository
from schemas import SNAPSHOT_COLLECTIONS, DatabaseSnapshot
from services.archive import SUPPORTED_FORMAT_VERSIONS

logger = get_logger(__name__)

CURRENT_FORMAT_VERSION = max(SUPPORTED_FORMAT_VERSIONS)
DEFAULT_AUDIT_WINDOW_DAYS = 90


async def build_snapshot(
    db: AsyncSession,
    *,
    audit_window_days: int = DEFAULT_AUDIT_WINDOW_DAYS,
    version: str = CURRENT_FORMAT_VERSION,
    now: datetime | None = None,
) -> DatabaseSnapshot:
    """Read every collection into a DatabaseSnapshot.

    Audit logs are limited to the last `audit_window_days`; everything else
    is read in full. Read errors propagate, so a snapshot is never partial.
    """
    now = now or datetime.now(UTC)
    repo = BackupRepository(db)

    collections: dict[str, list[Any]] = {}
    for model, collection, record_cls in SNAPSHOT_COLLECTIONS:
        if model is AuditLog:
            rows = await repo.list_audit_logs_since(
                now - timedelta(days=audit_window_days)
            )
        else:
            rows = await repo.list_all(model)
        collections[collection] = [record_cls.model_validate(row) for row in rows]

    snapshot = DatabaseSnapshot(created_at=now, version=version, **collections)
    logger.info("snapshot.built", version=version, **snapshot.collection_sizes())
    return snapshot


def snapshot_rows(snapshot: DatabaseSnapshot, collection: str) -> list[dict[str, Any]]:
    """Column dicts for one collection, ready to become ORM instances."""
    return [record.model_dump() for record in getattr(snapshot, collection)]
