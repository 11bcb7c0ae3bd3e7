"""Errors raised by the backup, restore and import services.

Validation problems are reported as InvalidBackupError (or a plain False from
the validate functions). Storage-side failures are wrapped in a BackupError
subclass with the original exception chained as __cause__.
"""

from enum import Enum
from pathlib import Path


class ValidationFailure(str, Enum):
    NOT_FOUND = "not_found"
    WRONG_EXTENSION = "wrong_extension"
    NOT_AN_ARCHIVE = "not_an_archive"
    NO_ENTRY = "no_entry"
    UNPARSEABLE = "unparseable"
    MISSING_VERSION = "missing_version"
    UNSUPPORTED_VERSION = "unsupported_version"


class InvalidBackupError(Exception):
    """The file is not a usable backup archive. Nothing was written."""

    def __init__(
        self, path: str | Path, reason: ValidationFailure, detail: str = ""
    ) -> None:
        self.path = Path(path)
        self.reason = reason
        self.detail = detail
        message = f"Invalid backup file {self.path.name}: {reason.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class BackupError(Exception):
    """A backup operation failed against the store or the filesystem."""


class RestoreError(BackupError):
    """Restore failed and the transaction was rolled back."""


class DataImportError(BackupError):
    """Import failed and the transaction was rolled back."""


class ConfigurationBackupError(BackupError):
    """Configuration backup or restore failed."""
