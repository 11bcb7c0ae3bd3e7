"""Backup archive format.

An archive is a ZIP file holding exactly one UTF-8 JSON entry: the
DatabaseSnapshot serialized with lowerCamelCase field names. Both the
archive and its entry are named `<prefix>_<yyyyMMdd_HHmmss>`.

Functions here are synchronous; async callers run them via asyncio.to_thread.
"""

import zipfile
from collections.abc import Collection
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from core.logger import get_logger
from schemas import DatabaseSnapshot
from services.backup_errors import InvalidBackupError, ValidationFailure

logger = get_logger(__name__)

ARCHIVE_SUFFIX = ".zip"
ENTRY_SUFFIX = ".json"
SUPPORTED_FORMAT_VERSIONS: frozenset[str] = frozenset({"1.0"})


@dataclass(frozen=True)
class BackupValidation:
    """Outcome of inspecting an archive. `reason` is set only when not ok."""

    ok: bool
    reason: ValidationFailure | None = None
    detail: str = ""
    version: str | None = None

    def __bool__(self) -> bool:
        return self.ok


def backup_file_name(prefix: str, ext: str, when: datetime | None = None) -> str:
    """`<prefix>_<yyyyMMdd_HHmmss>.<ext>`, timestamp in UTC."""
    when = when or datetime.now(UTC)
    return f"{prefix}_{when.astimezone(UTC):%Y%m%d_%H%M%S}.{ext.lstrip('.')}"


def write_archive(
    snapshot: DatabaseSnapshot, archive_path: str | Path, entry_name: str
) -> Path:
    """Write the snapshot as the single entry of a compressed archive.

    The archive is assembled under a temporary name and moved into place, so
    a failed write never leaves a partial backup behind.
    """
    archive_path = Path(archive_path)
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    payload = snapshot.model_dump_json(by_alias=True, indent=2)

    partial_path = archive_path.with_name(archive_path.name + ".partial")
    try:
        with zipfile.ZipFile(
            partial_path, mode="w", compression=zipfile.ZIP_DEFLATED
        ) as archive:
            archive.writestr(entry_name, payload.encode("utf-8"))
        partial_path.replace(archive_path)
    except Exception:
        partial_path.unlink(missing_ok=True)
        raise

    return archive_path


def _find_entry(archive: zipfile.ZipFile) -> zipfile.ZipInfo | None:
    for info in archive.infolist():
        if not info.is_dir() and info.filename.lower().endswith(ENTRY_SUFFIX):
            return info
    return None


def _load(
    path: Path, supported_versions: Collection[str]
) -> tuple[BackupValidation, DatabaseSnapshot | None]:
    if not path.is_file():
        return BackupValidation(False, ValidationFailure.NOT_FOUND), None

    if path.suffix.lower() != ARCHIVE_SUFFIX:
        return (
            BackupValidation(False, ValidationFailure.WRONG_EXTENSION, path.suffix),
            None,
        )

    try:
        with zipfile.ZipFile(path, mode="r") as archive:
            entry = _find_entry(archive)
            if entry is None:
                return BackupValidation(False, ValidationFailure.NO_ENTRY), None
            raw = archive.read(entry)
    except (zipfile.BadZipFile, OSError, EOFError) as e:
        return (
            BackupValidation(False, ValidationFailure.NOT_AN_ARCHIVE, str(e)),
            None,
        )

    try:
        snapshot = DatabaseSnapshot.model_validate_json(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValidationError) as e:
        detail = str(e).splitlines()[0] if str(e) else type(e).__name__
        return BackupValidation(False, ValidationFailure.UNPARSEABLE, detail), None

    version = snapshot.version.strip()
    if not version:
        return BackupValidation(False, ValidationFailure.MISSING_VERSION), None
    if version not in supported_versions:
        return (
            BackupValidation(
                False, ValidationFailure.UNSUPPORTED_VERSION, version, version
            ),
            None,
        )

    return BackupValidation(True, version=version), snapshot


def inspect_archive(
    path: str | Path,
    supported_versions: Collection[str] = SUPPORTED_FORMAT_VERSIONS,
) -> BackupValidation:
    """Check an archive without raising. Use `.reason` to see why it failed."""
    validation, _snapshot = _load(Path(path), supported_versions)
    return validation


def validate_archive(
    path: str | Path,
    supported_versions: Collection[str] = SUPPORTED_FORMAT_VERSIONS,
) -> bool:
    return inspect_archive(path, supported_versions).ok


def read_archive(
    path: str | Path,
    supported_versions: Collection[str] = SUPPORTED_FORMAT_VERSIONS,
) -> DatabaseSnapshot:
    """Validate and load an archive.

    Raises:
        InvalidBackupError: when any validation check fails.
    """
    path = Path(path)
    validation, snapshot = _load(path, supported_versions)
    if not validation.ok or snapshot is None:
        reason = validation.reason or ValidationFailure.UNPARSEABLE
        logger.warning(
            "archive.invalid",
            path=str(path),
            reason=reason.value,
            detail=validation.detail,
        )
        raise InvalidBackupError(path, reason, validation.detail)
    return snapshot
