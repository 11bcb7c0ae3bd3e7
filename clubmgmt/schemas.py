"""Pydantic schemas for backup documents and service results.

Backup, export and history files use lowerCamelCase field names on disk.
Every schema accepts both the camelCase alias and the Python field name.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import (
    ActivityLevel,
    AttendanceStatus,
    AuditLog,
    AuditLogType,
    Club,
    Event,
    EventParticipant,
    EventStatus,
    Report,
    ReportType,
    Setting,
    SettingsScope,
    SystemRole,
    User,
)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# Table records (one per ORM model, original primary keys preserved)
# =============================================================================


class ClubRecord(CamelModel):
    id: int
    name: str
    description: str | None = None
    is_active: bool = True
    created_date: UtcDatetime


class UserRecord(CamelModel):
    id: int
    full_name: str
    email: str
    password_hash: str
    student_id: str | None = None
    phone_number: str | None = None
    system_role: SystemRole = SystemRole.MEMBER
    activity_level: ActivityLevel = ActivityLevel.ACTIVE
    club_id: int | None = None
    is_active: bool = True
    two_factor_enabled: bool = False
    created_at: UtcDatetime


class EventRecord(CamelModel):
    id: int
    name: str
    description: str | None = None
    event_date: UtcDatetime
    location: str
    registration_deadline: UtcDatetime | None = None
    max_participants: int | None = None
    status: EventStatus = EventStatus.SCHEDULED
    club_id: int
    created_date: UtcDatetime


class EventParticipantRecord(CamelModel):
    id: int
    user_id: int
    event_id: int
    status: AttendanceStatus = AttendanceStatus.REGISTERED
    registration_date: UtcDatetime
    attendance_date: UtcDatetime | None = None


class ReportRecord(CamelModel):
    id: int
    title: str
    type: ReportType
    content: str
    generated_date: UtcDatetime
    semester: str | None = None
    club_id: int | None = None
    generated_by_user_id: int | None = None


class SettingRecord(CamelModel):
    id: int
    user_id: int | None = None
    club_id: int | None = None
    key: str
    value: str
    scope: SettingsScope
    created_at: UtcDatetime
    updated_at: UtcDatetime


class AuditLogRecord(CamelModel):
    id: int
    user_id: int | None = None
    action: str
    details: str = ""
    log_type: AuditLogType
    ip_address: str | None = None
    timestamp: UtcDatetime
    additional_data: str | None = None


# =============================================================================
# Snapshot document
# =============================================================================


class DatabaseSnapshot(CamelModel):
    """Full backup of the store.

    `version` is left empty when the document doesn't carry one so that
    validation can reject it instead of failing to parse.
    """

    created_at: UtcDatetime
    version: str = ""
    users: list[UserRecord] = Field(default_factory=list)
    clubs: list[ClubRecord] = Field(default_factory=list)
    events: list[EventRecord] = Field(default_factory=list)
    event_participants: list[EventParticipantRecord] = Field(default_factory=list)
    reports: list[ReportRecord] = Field(default_factory=list)
    settings: list[SettingRecord] = Field(default_factory=list)
    audit_logs: list[AuditLogRecord] = Field(default_factory=list)

    def collection_sizes(self) -> dict[str, int]:
        return {
            collection: len(getattr(self, collection))
            for _model, collection, _record in SNAPSHOT_COLLECTIONS
        }


# (model, snapshot attribute, record schema) in restore order
SNAPSHOT_COLLECTIONS: tuple[tuple[type, str, type[CamelModel]], ...] = (
    (Club, "clubs", ClubRecord),
    (User, "users", UserRecord),
    (Event, "events", EventRecord),
    (EventParticipant, "event_participants", EventParticipantRecord),
    (Report, "reports", ReportRecord),
    (Setting, "settings", SettingRecord),
    (AuditLog, "audit_logs", AuditLogRecord),
)


# =============================================================================
# Backup history
# =============================================================================


class BackupType(str, PyEnum):
    FULL = "Full"
    INCREMENTAL = "Incremental"
    CONFIGURATION = "Configuration"


class BackupInfo(CamelModel):
    """Metadata describing one archive on disk."""

    file_name: str
    file_path: str
    created_at: UtcDatetime
    file_size: int = 0
    backup_type: BackupType = BackupType.FULL
    is_valid: bool = True


# =============================================================================
# Export / configuration documents
# =============================================================================


class DataExport(CamelModel):
    """Selective export. Collections not requested are omitted from the file."""

    exported_at: UtcDatetime
    users: list[UserRecord] | None = None
    clubs: list[ClubRecord] | None = None
    events: list[EventRecord] | None = None
    reports: list[ReportRecord] | None = None


class ConfigurationBackup(CamelModel):
    created_at: UtcDatetime
    global_settings: list[SettingRecord] = Field(default_factory=list)
    application_config: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Audit queries
# =============================================================================


class AuditLogFilter(BaseModel):
    log_type: AuditLogType | None = None
    user_id: int | None = None
    action_contains: str | None = None
    from_time: datetime | None = None
    to_time: datetime | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class AuditLogPage(BaseModel):
    items: list[AuditLogRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total
