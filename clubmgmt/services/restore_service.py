"""Ordered restorer: replaces the store's contents from a snapshot.

All steps run in one transaction on the given session:

1. delete every row, children first
   (AuditLog, Setting, Report, EventParticipant, Event, User, Club)
2. insert snapshot rows, parents first, flushing after each table
   (Club, User, Event, EventParticipant, Report, Setting, AuditLog)
3. move PostgreSQL id sequences past the restored keys
4. commit

Any failure rolls the whole transaction back. Rows keep the primary keys
captured in the snapshot, so foreign keys inside child rows need no remapping.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import get_logger
from models import RESTORE_ORDER
from repositories.backup_repository import BackupRepository
from schemas import SNAPSHOT_COLLECTIONS, DatabaseSnapshot
from services.backup_errors import RestoreError
from services.snapshot_service import snapshot_rows

logger = get_logger(__name__)


async def restore_snapshot(db: AsyncSession, snapshot: DatabaseSnapshot) -> dict[str, int]:
    """Replace all tables with the snapshot's contents.

    The session's current transaction is committed on success, so callers
    must not have unrelated pending work on it.

    Returns:
        Rows inserted per snapshot collection.

    Raises:
        RestoreError: wrapping the first failure; nothing is kept.
    """
    repo = BackupRepository(db)
    inserted: dict[str, int] = {}

    # Stale instances would collide with the re-inserted primary keys
    db.expunge_all()

    try:
        for model in reversed(RESTORE_ORDER):
            deleted = await repo.delete_all(model)
            logger.debug("restore.table.cleared", table=model.__tablename__, rows=deleted)

        for model, collection, _record_cls in SNAPSHOT_COLLECTIONS:
            inserted[collection] = await repo.insert_rows(
                model, snapshot_rows(snapshot, collection)
            )

        for model in RESTORE_ORDER:
            await repo.reset_id_sequence(model)

        await db.commit()
    except Exception as e:
        try:
            await db.rollback()
        except Exception as rollback_err:
            logger.warning("restore.rollback.failed", error=str(rollback_err))
        logger.error(
            "restore.failed",
            error=str(e),
            error_type=type(e).__name__,
            restored_so_far=inserted,
        )
        raise RestoreError("Failed to restore database backup") from e

    logger.info("restore.completed", version=snapshot.version, **inserted)
    return inserted
