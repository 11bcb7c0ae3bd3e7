"""Backup history side file and retention sweep.

The history is a JSON list of BackupInfo stored next to the archives.
Validity is never trusted from disk: every load re-checks that each file
still exists. Writes are not synchronized across processes; callers that
create backups concurrently must serialize themselves.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from core.logger import get_logger
from schemas import BackupInfo, BackupType

logger = get_logger(__name__)

_history_adapter = TypeAdapter(list[BackupInfo])


@dataclass
class RetentionResult:
    """Outcome of a retention sweep. Partial success is normal."""

    cutoff: datetime
    deleted: list[BackupInfo] = field(default_factory=list)
    failed: list[BackupInfo] = field(default_factory=list)
    kept: int = 0
    error: str | None = None

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


def load_history(history_path: str | Path) -> list[BackupInfo]:
    """Entries newest first, with is_valid recomputed from the filesystem.

    A missing file is an empty history. An unreadable one is logged and
    treated as empty.
    """
    history_path = Path(history_path)
    if not history_path.exists():
        return []

    try:
        entries = _history_adapter.validate_json(history_path.read_bytes())
    except (OSError, ValidationError) as e:
        logger.error("backup.history.unreadable", path=str(history_path), error=str(e))
        return []

    for entry in entries:
        entry.is_valid = Path(entry.file_path).exists()

    return sorted(entries, key=lambda entry: entry.created_at, reverse=True)


def save_history(history_path: str | Path, entries: list[BackupInfo]) -> None:
    history_path = Path(history_path)
    history_path.parent.mkdir(parents=True, exist_ok=True)
    payload = _history_adapter.dump_json(entries, by_alias=True, indent=2)

    tmp_path = history_path.with_name(history_path.name + ".tmp")
    tmp_path.write_bytes(payload)
    tmp_path.replace(history_path)


def append_history(history_path: str | Path, info: BackupInfo) -> list[BackupInfo]:
    entries = load_history(history_path)
    entries.insert(0, info)
    save_history(history_path, entries)
    return entries


def make_backup_info(
    path: str | Path,
    created_at: datetime,
    backup_type: BackupType = BackupType.FULL,
) -> BackupInfo:
    path = Path(path)
    return BackupInfo(
        file_name=path.name,
        file_path=str(path),
        created_at=created_at,
        file_size=path.stat().st_size,
        backup_type=backup_type,
        is_valid=True,
    )


def sweep_history(history_path: str | Path, cutoff: datetime) -> RetentionResult:
    """Delete backups created before `cutoff`, one file at a time.

    A file that can't be deleted is logged and left in history so the next
    sweep retries it; it never stops the sweep. Files already gone count as
    deleted.
    """
    entries = load_history(history_path)
    result = RetentionResult(cutoff=cutoff)
    remaining: list[BackupInfo] = []

    for entry in entries:
        if entry.created_at >= cutoff:
            remaining.append(entry)
            continue
        try:
            Path(entry.file_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "backup.retention.delete_failed",
                file=entry.file_name,
                error=str(e),
            )
            result.failed.append(entry)
            remaining.append(entry)
        else:
            result.deleted.append(entry)

    result.kept = len(remaining)
    if result.deleted:
        save_history(history_path, remaining)
    return result


def latest_valid(
    entries: list[BackupInfo], backup_type: BackupType | None = BackupType.FULL
) -> BackupInfo | None:
    candidates = [
        entry
        for entry in entries
        if entry.is_valid and (backup_type is None or entry.backup_type == backup_type)
    ]
    return max(candidates, key=lambda entry: entry.created_at, default=None)
