"""Backup service.

Orchestrates everything that protects the club data:
- Full database backups (snapshot -> ZIP archive -> history entry)
- Restore from an archive
- Retention of old archives
- Selective data export / import
- Configuration backup / restore (global settings)
- Maintenance runs and system health checks

Post-operation audit writes and history updates are best-effort: they are
logged when they fail but never undo the operation that already succeeded.
"""

import asyncio
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum as PyEnum
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from core import get_logger
from core.config import Settings, get_settings
from core.context import ServiceContext
from core.database import check_db_connection
from models import AuditLog, Club, Event, Report, Setting, SettingsScope, User
from repositories.backup_repository import BackupRepository
from repositories.setting_repository import SettingRepository
from schemas import (
    BackupInfo,
    BackupType,
    ClubRecord,
    ConfigurationBackup,
    DataExport,
    EventRecord,
    ReportRecord,
    SettingRecord,
    UserRecord,
)
from services.archive import (
    SUPPORTED_FORMAT_VERSIONS,
    backup_file_name,
    read_archive,
    validate_archive,
    write_archive,
)
from services.audit_service import cleanup_old_logs, log_system_event
from services.backup_errors import (
    BackupError,
    ConfigurationBackupError,
    DataImportError,
)
from services.backup_history import (
    RetentionResult,
    append_history,
    latest_valid,
    load_history,
    make_backup_info,
    sweep_history,
)
from services.restore_service import restore_snapshot
from services.snapshot_service import build_snapshot

logger = get_logger(__name__)

LOW_DISK_CRITICAL_BYTES = 1024**3
LOW_DISK_WARNING_BYTES = 5 * 1024**3
STALE_BACKUP_DAYS = 7
AUDIT_LOG_COUNT_THRESHOLD = 100_000

# (snapshot attribute, model, date column for window filters, record schema)
# in dependency order
_DATA_COLLECTIONS = (
    ("clubs", Club, "created_date", ClubRecord),
    ("users", User, "created_at", UserRecord),
    ("events", Event, "created_date", EventRecord),
    ("reports", Report, "generated_date", ReportRecord),
)


# =============================================================================
# Option and result types
# =============================================================================


@dataclass
class ExportOptions:
    include_users: bool = True
    include_clubs: bool = True
    include_events: bool = True
    include_reports: bool = True
    from_date: datetime | None = None
    to_date: datetime | None = None
    export_path: str | Path | None = None

    def includes(self, collection: str) -> bool:
        return getattr(self, f"include_{collection}")


@dataclass
class ImportOptions:
    import_users: bool = True
    import_clubs: bool = True
    import_events: bool = True
    import_reports: bool = True
    clear_existing: bool = False

    def includes(self, collection: str) -> bool:
        return getattr(self, f"import_{collection}")


@dataclass
class ImportResult:
    imported: dict[str, int] = field(default_factory=dict)
    cleared: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.imported.values())


@dataclass
class MaintenanceOptions:
    cleanup_old_logs: bool = True
    optimize_database: bool = True
    cleanup_temp_files: bool = True
    delete_old_backups: bool = True
    create_backup: bool = True
    # None means use the configured retention
    log_retention_days: int | None = None
    backup_retention_days: int | None = None


@dataclass
class MaintenanceReport:
    started_at: datetime
    completed_at: datetime | None = None
    tasks_performed: list[str] = field(default_factory=list)
    success: bool = False
    error_message: str | None = None

    @property
    def duration(self) -> timedelta:
        if self.completed_at is None:
            return timedelta(0)
        return self.completed_at - self.started_at


class HealthStatus(str, PyEnum):
    HEALTHY = "Healthy"
    INFO = "Info"
    WARNING = "Warning"
    CRITICAL = "Critical"


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.INFO: 1,
    HealthStatus.WARNING: 2,
    HealthStatus.CRITICAL: 3,
}


@dataclass
class SystemHealthReport:
    checked_at: datetime
    status: HealthStatus = HealthStatus.HEALTHY
    database_connected: bool = False
    free_disk_bytes: int | None = None
    days_since_last_backup: int | None = None
    audit_log_count: int | None = None
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def escalate(self, status: HealthStatus, issue: str) -> None:
        """Record an issue; overall status only ever gets worse."""
        self.issues.append(issue)
        if _SEVERITY[status] > _SEVERITY[self.status]:
            self.status = status


# =============================================================================
# Helpers
# =============================================================================


def _supported_versions(settings: Settings) -> frozenset[str]:
    return SUPPORTED_FORMAT_VERSIONS | {settings.backup_format_version}


async def _rollback_quietly(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except Exception as rollback_err:
        logger.warning("db.rollback.failed", error=str(rollback_err))


async def _audit(
    db: AsyncSession, action: str, details: str, ctx: ServiceContext | None
) -> None:
    """Write and commit an audit event. Failures are logged, never raised."""
    try:
        await log_system_event(db, action, details, ctx=ctx)
        await db.commit()
    except Exception as e:
        logger.warning("audit.write.failed", action=action, error=str(e))
        await _rollback_quietly(db)


async def _record_history(
    settings: Settings, path: Path, created_at: datetime, backup_type: BackupType
) -> None:
    try:
        info = await asyncio.to_thread(make_backup_info, path, created_at, backup_type)
        await asyncio.to_thread(append_history, settings.backup_history_path, info)
    except (OSError, ValueError) as e:
        logger.warning("backup.history.write_failed", file=path.name, error=str(e))


def _write_text(path: Path, payload: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")
    return path


# =============================================================================
# Full backups
# =============================================================================


async def create_database_backup(
    db: AsyncSession,
    *,
    backup_path: str | Path | None = None,
    ctx: ServiceContext | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> Path:
    """Snapshot the database into a new archive.

    Args:
        backup_path: Full archive path. Any other suffix is replaced with
            `.zip`. Defaults to `<backup_dir>/<prefix>_<yyyyMMdd_HHmmss>.zip`.

    Raises:
        BackupError: the snapshot or the archive could not be produced.
    """
    settings = settings or get_settings()
    now = now or datetime.now(UTC)
    prefix = settings.backup_file_prefix

    target = (
        Path(backup_path).with_suffix(".zip")
        if backup_path
        else settings.backup_dir_path / backup_file_name(prefix, "zip", now)
    )
    entry_name = backup_file_name(prefix, "json", now)

    try:
        snapshot = await build_snapshot(
            db,
            audit_window_days=settings.audit_log_backup_window_days,
            version=settings.backup_format_version,
            now=now,
        )
        await asyncio.to_thread(write_archive, snapshot, target, entry_name)
    except Exception as e:
        logger.error(
            "backup.failed",
            path=str(target),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise BackupError(f"Failed to create database backup at {target}") from e

    await _record_history(settings, target, now, BackupType.FULL)
    await _audit(db, "Database Backup Created", f"Backup created: {target.name}", ctx)

    logger.info("backup.created", path=str(target), **snapshot.collection_sizes())
    return target


async def restore_database_backup(
    db: AsyncSession,
    backup_path: str | Path,
    *,
    ctx: ServiceContext | None = None,
    settings: Settings | None = None,
) -> dict[str, int]:
    """Replace the database contents with an archive's snapshot.

    Raises:
        InvalidBackupError: the archive failed validation; nothing was touched.
        RestoreError: the restore failed and was rolled back.
    """
    settings = settings or get_settings()
    backup_path = Path(backup_path)

    snapshot = await asyncio.to_thread(
        read_archive, backup_path, _supported_versions(settings)
    )
    restored = await restore_snapshot(db, snapshot)

    await _audit(
        db, "Database Restored", f"Database restored from: {backup_path.name}", ctx
    )
    logger.info("backup.restored", path=str(backup_path), **restored)
    return restored


async def validate_backup_file(
    backup_path: str | Path, settings: Settings | None = None
) -> bool:
    settings = settings or get_settings()
    return await asyncio.to_thread(
        validate_archive, backup_path, _supported_versions(settings)
    )


async def get_backup_history(settings: Settings | None = None) -> list[BackupInfo]:
    """All recorded backups, newest first, validity re-checked on disk."""
    settings = settings or get_settings()
    return await asyncio.to_thread(load_history, settings.backup_history_path)


async def get_latest_backup(settings: Settings | None = None) -> BackupInfo | None:
    return latest_valid(await get_backup_history(settings))


async def delete_old_backups(
    db: AsyncSession,
    retention_days: int = 30,
    *,
    ctx: ServiceContext | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> RetentionResult:
    """Delete archives older than `retention_days`.

    Never raises for I/O problems: per-file failures land in
    `result.failed`, anything worse in `result.error`.
    """
    if retention_days <= 0:
        raise ValueError("retention_days must be positive")

    settings = settings or get_settings()
    cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)

    try:
        result = await asyncio.to_thread(
            sweep_history, settings.backup_history_path, cutoff
        )
    except Exception as e:
        logger.error("backup.retention.failed", cutoff=cutoff.isoformat(), error=str(e))
        return RetentionResult(cutoff=cutoff, error=str(e))

    logger.info(
        "backup.retention.completed",
        cutoff=cutoff.isoformat(),
        deleted=result.deleted_count,
        failed=len(result.failed),
        kept=result.kept,
    )
    await _audit(
        db,
        "Old Backups Deleted",
        f"Deleted {result.deleted_count} backups older than {retention_days} days",
        ctx,
    )
    return result


# =============================================================================
# Data export / import
# =============================================================================


async def export_data(
    db: AsyncSession,
    options: ExportOptions | None = None,
    *,
    ctx: ServiceContext | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> Path:
    """Write the selected collections to a plain JSON export file.

    Collections that were not selected are left out of the file entirely,
    so an import can tell "not exported" apart from "exported, empty".
    """
    options = options or ExportOptions()
    settings = settings or get_settings()
    now = now or datetime.now(UTC)
    target = (
        Path(options.export_path)
        if options.export_path
        else settings.backup_dir_path
        / backup_file_name(settings.export_file_prefix, "json", now)
    )

    repo = BackupRepository(db)
    collections: dict[str, list] = {}
    try:
        for collection, model, date_column, record_cls in _DATA_COLLECTIONS:
            if not options.includes(collection):
                continue
            rows = await repo.list_created_between(
                model,
                date_column,
                from_time=options.from_date,
                to_time=options.to_date,
            )
            collections[collection] = [record_cls.model_validate(row) for row in rows]

        document = DataExport(exported_at=now, **collections)
        payload = document.model_dump_json(
            by_alias=True,
            indent=2,
            exclude={name for name, *_ in _DATA_COLLECTIONS if name not in collections},
        )
        await asyncio.to_thread(_write_text, target, payload)
    except Exception as e:
        logger.error("export.failed", path=str(target), error=str(e))
        raise BackupError(f"Failed to export data to {target}") from e

    counts = {name: len(rows) for name, rows in collections.items()}
    await _audit(db, "Data Exported", f"Data exported to: {target.name}", ctx)
    logger.info("export.completed", path=str(target), **counts)
    return target


async def import_data(
    db: AsyncSession,
    import_path: str | Path,
    options: ImportOptions | None = None,
    *,
    ctx: ServiceContext | None = None,
) -> ImportResult:
    """Load collections from an export file in a single transaction.

    Rows keep their exported ids. With `clear_existing` the selected tables
    are emptied first (children before parents); without it, rows whose ids
    already exist make the whole import fail.

    Clearing a parent table also removes its dependents through the
    foreign-key cascades, so clearing clubs without importing events
    leaves no events behind.

    Raises:
        DataImportError: unreadable file or failed write; nothing is kept.
    """
    options = options or ImportOptions()
    import_path = Path(import_path)

    try:
        raw = await asyncio.to_thread(import_path.read_bytes)
        document = DataExport.model_validate_json(raw)
    except (OSError, ValidationError) as e:
        logger.error("import.unreadable", path=str(import_path), error=str(e))
        raise DataImportError(f"Cannot read export file {import_path}") from e

    selected = [
        (collection, model)
        for collection, model, _column, _record in _DATA_COLLECTIONS
        if options.includes(collection) and getattr(document, collection) is not None
    ]

    repo = BackupRepository(db)
    result = ImportResult()
    db.expunge_all()

    try:
        if options.clear_existing:
            for collection, model in reversed(selected):
                await repo.delete_all(model)
                result.cleared.append(collection)

        for collection, model in selected:
            rows = [record.model_dump() for record in getattr(document, collection)]
            result.imported[collection] = await repo.insert_rows(model, rows)

        for _collection, model in selected:
            await repo.reset_id_sequence(model)

        await db.commit()
    except Exception as e:
        await _rollback_quietly(db)
        logger.error(
            "import.failed",
            path=str(import_path),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise DataImportError(f"Failed to import data from {import_path}") from e

    await _audit(db, "Data Imported", f"Data imported from: {import_path.name}", ctx)
    logger.info("import.completed", path=str(import_path), **result.imported)
    return result


# =============================================================================
# Configuration backup / restore
# =============================================================================


async def backup_configuration(
    db: AsyncSession,
    *,
    backup_path: str | Path | None = None,
    ctx: ServiceContext | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> Path:
    """Save global-scope settings and the runtime configuration to JSON.

    Raises:
        ConfigurationBackupError: the file could not be produced.
    """
    settings = settings or get_settings()
    now = now or datetime.now(UTC)
    target = (
        Path(backup_path)
        if backup_path
        else settings.backup_dir_path
        / backup_file_name(settings.config_backup_prefix, "json", now)
    )

    try:
        rows = await SettingRepository(db).list_by_scope(SettingsScope.GLOBAL)
        document = ConfigurationBackup(
            created_at=now,
            global_settings=[SettingRecord.model_validate(row) for row in rows],
            application_config=settings.public_config(),
        )
        await asyncio.to_thread(
            _write_text, target, document.model_dump_json(by_alias=True, indent=2)
        )
    except Exception as e:
        logger.error("config.backup.failed", path=str(target), error=str(e))
        raise ConfigurationBackupError(
            f"Failed to back up configuration to {target}"
        ) from e

    await _record_history(settings, target, now, BackupType.CONFIGURATION)
    await _audit(
        db, "Configuration Backed Up", f"Configuration saved to: {target.name}", ctx
    )
    logger.info("config.backup.created", path=str(target), settings=len(rows))
    return target


async def restore_configuration(
    db: AsyncSession,
    backup_path: str | Path,
    *,
    ctx: ServiceContext | None = None,
    settings: Settings | None = None,
) -> int:
    """Replace all global-scope settings with those in a configuration backup.

    The runtime configuration comes from the environment and is not
    overwritten; differences from the backup are only logged.

    Returns:
        Number of settings restored.

    Raises:
        ConfigurationBackupError: unreadable file or failed write; nothing is kept.
    """
    settings = settings or get_settings()
    backup_path = Path(backup_path)

    try:
        raw = await asyncio.to_thread(backup_path.read_bytes)
        document = ConfigurationBackup.model_validate_json(raw)
    except (OSError, ValidationError) as e:
        logger.error("config.restore.unreadable", path=str(backup_path), error=str(e))
        raise ConfigurationBackupError(
            f"Cannot read configuration backup {backup_path}"
        ) from e

    # Ids are not carried over; global settings have no owner to keep consistent
    restored = [
        Setting(
            key=record.key,
            value=record.value,
            scope=SettingsScope.GLOBAL,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        for record in document.global_settings
        if record.scope == SettingsScope.GLOBAL
    ]

    try:
        await SettingRepository(db).delete_by_scope(SettingsScope.GLOBAL)
        db.add_all(restored)
        await db.flush()
        await db.commit()
    except Exception as e:
        await _rollback_quietly(db)
        logger.error("config.restore.failed", path=str(backup_path), error=str(e))
        raise ConfigurationBackupError(
            f"Failed to restore configuration from {backup_path}"
        ) from e

    current = settings.public_config()
    differing = sorted(
        key
        for key, value in document.application_config.items()
        if current.get(key) != value
    )
    if differing:
        logger.warning("config.restore.app_config_differs", keys=differing)

    await _audit(
        db,
        "Configuration Restored",
        f"Configuration restored from: {backup_path.name}",
        ctx,
    )
    logger.info("config.restore.completed", path=str(backup_path), settings=len(restored))
    return len(restored)


# =============================================================================
# Maintenance
# =============================================================================


def _remove_stale_files(directory: Path, cutoff_timestamp: float) -> int:
    removed = 0
    for path in list(directory.rglob("*")):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff_timestamp:
                path.unlink()
                removed += 1
        except OSError as e:
            logger.warning("temp.cleanup.file_failed", file=path.name, error=str(e))
    return removed


async def cleanup_temporary_files(
    settings: Settings | None = None, *, now: datetime | None = None
) -> int:
    """Delete temp files older than `temp_file_max_age_hours`. Never raises."""
    settings = settings or get_settings()
    temp_dir = settings.temp_dir_path
    cutoff = (now or datetime.now(UTC)) - timedelta(
        hours=settings.temp_file_max_age_hours
    )

    if not temp_dir.is_dir():
        return 0

    try:
        removed = await asyncio.to_thread(
            _remove_stale_files, temp_dir, cutoff.timestamp()
        )
    except OSError as e:
        logger.warning("temp.cleanup.failed", path=str(temp_dir), error=str(e))
        return 0

    logger.info("temp.cleanup.completed", removed=removed)
    return removed


async def _optimize_database(db: AsyncSession) -> None:
    # Refreshes planner statistics on both SQLite and PostgreSQL
    await db.execute(text("ANALYZE"))
    await db.commit()


async def perform_maintenance(
    db: AsyncSession,
    options: MaintenanceOptions | None = None,
    *,
    ctx: ServiceContext | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> MaintenanceReport:
    """Run the enabled maintenance tasks in order, stopping at the first failure.

    Order: audit log cleanup, database optimization, temp cleanup,
    old-backup deletion, new backup. A failure is reported, not raised.
    """
    options = options or MaintenanceOptions()
    settings = settings or get_settings()
    report = MaintenanceReport(started_at=datetime.now(UTC))

    try:
        if options.cleanup_old_logs:
            days = options.log_retention_days or settings.log_retention_days
            deleted = await cleanup_old_logs(db, days, now=now)
            await db.commit()
            report.tasks_performed.append(f"Cleaned up {deleted} old audit logs")

        if options.optimize_database:
            await _optimize_database(db)
            report.tasks_performed.append("Optimized database")

        if options.cleanup_temp_files:
            removed = await cleanup_temporary_files(settings, now=now)
            report.tasks_performed.append(f"Removed {removed} temporary files")

        if options.delete_old_backups:
            days = options.backup_retention_days or settings.backup_retention_days
            retention = await delete_old_backups(
                db, days, ctx=ctx, settings=settings, now=now
            )
            if retention.error:
                raise BackupError(f"Old backup deletion failed: {retention.error}")
            report.tasks_performed.append(
                f"Deleted {retention.deleted_count} old backups"
            )

        if options.create_backup:
            path = await create_database_backup(db, ctx=ctx, settings=settings, now=now)
            report.tasks_performed.append(f"Created backup {path.name}")

        report.success = True
    except Exception as e:
        await _rollback_quietly(db)
        report.error_message = str(e)
        logger.error(
            "maintenance.failed",
            error=str(e),
            error_type=type(e).__name__,
            tasks_performed=report.tasks_performed,
        )
    finally:
        report.completed_at = datetime.now(UTC)

    outcome = "completed" if report.success else f"failed: {report.error_message}"
    await _audit(
        db,
        "System Maintenance",
        f"Maintenance {outcome}. Tasks: {'; '.join(report.tasks_performed) or 'none'}",
        ctx,
    )
    logger.info(
        "maintenance.finished",
        success=report.success,
        tasks=len(report.tasks_performed),
        duration_ms=round(report.duration.total_seconds() * 1000, 2),
    )
    return report


def _free_disk_bytes(directory: Path) -> int:
    directory.mkdir(parents=True, exist_ok=True)
    return shutil.disk_usage(directory).free


async def check_system_health(
    db: AsyncSession,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> SystemHealthReport:
    """Assess database connectivity, disk space, backup freshness and log volume."""
    settings = settings or get_settings()
    now = now or datetime.now(UTC)
    report = SystemHealthReport(checked_at=now)

    report.database_connected = await check_db_connection(db)
    if not report.database_connected:
        report.escalate(HealthStatus.CRITICAL, "Database connection failed")

    try:
        report.free_disk_bytes = await asyncio.to_thread(
            _free_disk_bytes, settings.backup_dir_path
        )
    except OSError as e:
        logger.warning("health.disk_check.failed", error=str(e))
        report.escalate(HealthStatus.WARNING, "Could not determine free disk space")
    else:
        free_gb = report.free_disk_bytes / 1024**3
        if report.free_disk_bytes < LOW_DISK_CRITICAL_BYTES:
            report.escalate(
                HealthStatus.CRITICAL, f"Low disk space: {free_gb:.2f} GB free"
            )
        elif report.free_disk_bytes < LOW_DISK_WARNING_BYTES:
            report.escalate(
                HealthStatus.WARNING, f"Disk space running low: {free_gb:.2f} GB free"
            )

    latest = await get_latest_backup(settings)
    if latest is None:
        report.escalate(HealthStatus.WARNING, "No database backup found")
        report.recommendations.append("Create a database backup")
    else:
        report.days_since_last_backup = (now - latest.created_at).days
        if report.days_since_last_backup > STALE_BACKUP_DAYS:
            report.escalate(
                HealthStatus.WARNING,
                f"Last backup is {report.days_since_last_backup} days old",
            )
            report.recommendations.append("Create a fresh database backup")

    if report.database_connected:
        try:
            report.audit_log_count = await BackupRepository(db).count(AuditLog)
        except Exception as e:
            logger.error("health.audit_count.failed", error=str(e))
            report.escalate(HealthStatus.CRITICAL, f"Database query failed: {e}")
        else:
            if report.audit_log_count > AUDIT_LOG_COUNT_THRESHOLD:
                report.escalate(
                    HealthStatus.INFO,
                    f"Audit log table holds {report.audit_log_count} entries",
                )
                report.recommendations.append(
                    "Run maintenance to clean up old audit logs"
                )

    logger.info(
        "health.checked",
        status=report.status.value,
        issues=len(report.issues),
        days_since_last_backup=report.days_since_last_backup,
    )
    return report
