"""Audit service: the single point for recording and querying audit events."""

from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ServiceContext
from core.logger import get_logger
from models import AuditLog, AuditLogType
from repositories.audit_repository import AuditLogRepository
from schemas import AuditLogFilter, AuditLogPage, AuditLogRecord

logger = get_logger(__name__)

MAX_ACTION_LENGTH = 255
MAX_DETAILS_LENGTH = 2000


async def log_event(
    db: AsyncSession,
    action: str,
    details: str = "",
    *,
    log_type: AuditLogType = AuditLogType.USER_ACTION,
    ctx: ServiceContext | None = None,
    additional_data: str | None = None,
) -> AuditLog:
    """Record an audit event attributed to the caller in `ctx`.

    Does NOT commit. Long action/details strings are truncated to the
    column limits rather than rejected.
    """
    ctx = ctx or ServiceContext.system()
    repo = AuditLogRepository(db)
    entry = await repo.create(
        action=action[:MAX_ACTION_LENGTH],
        details=details[:MAX_DETAILS_LENGTH],
        log_type=log_type,
        user_id=ctx.user_id,
        ip_address=ctx.ip_address,
        additional_data=additional_data,
    )
    logger.info(
        "audit.recorded",
        action=entry.action,
        log_type=log_type.value,
        user_id=ctx.user_id,
    )
    return entry


async def log_system_event(
    db: AsyncSession,
    action: str,
    details: str = "",
    ctx: ServiceContext | None = None,
) -> AuditLog:
    return await log_event(
        db, action, details, log_type=AuditLogType.SYSTEM_EVENT, ctx=ctx
    )


async def get_audit_logs(
    db: AsyncSession, audit_filter: AuditLogFilter | None = None
) -> AuditLogPage:
    """Filtered audit logs, newest first, with the total match count."""
    audit_filter = audit_filter or AuditLogFilter()
    repo = AuditLogRepository(db)
    rows = await repo.list_filtered(audit_filter)
    total = await repo.count_filtered(audit_filter)
    return AuditLogPage(
        items=[AuditLogRecord.model_validate(row) for row in rows],
        total=total,
        limit=audit_filter.limit,
        offset=audit_filter.offset,
    )


async def cleanup_old_logs(
    db: AsyncSession, retention_days: int, *, now: datetime | None = None
) -> int:
    """Delete audit logs older than `retention_days`. Returns rows removed."""
    if retention_days <= 0:
        raise ValueError("retention_days must be positive")

    cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
    deleted = await AuditLogRepository(db).delete_older_than(cutoff)
    logger.info(
        "audit.cleanup.completed",
        deleted=deleted,
        retention_days=retention_days,
        cutoff=cutoff.isoformat(),
    )
    return deleted
