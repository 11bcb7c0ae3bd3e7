"""SQLAlchemy models for club management.

Foreign keys define the dependency order used by backup restore:
Club -> User -> Event -> EventParticipant -> Report -> Setting -> AuditLog.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    # Stored as strings so backups stay readable and portable across dialects
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda e: [member.value for member in e],
        length=32,
    )


class SystemRole(str, PyEnum):
    ADMIN = "Admin"
    CLUB_OWNER = "ClubOwner"
    MEMBER = "Member"


class ActivityLevel(str, PyEnum):
    ACTIVE = "Active"
    NORMAL = "Normal"
    INACTIVE = "Inactive"


class EventStatus(str, PyEnum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    POSTPONED = "Postponed"


class AttendanceStatus(str, PyEnum):
    REGISTERED = "Registered"
    ATTENDED = "Attended"
    ABSENT = "Absent"
    CANCELLED = "Cancelled"


class ReportType(str, PyEnum):
    MEMBER_STATISTICS = "MemberStatistics"
    EVENT_OUTCOMES = "EventOutcomes"
    ACTIVITY_TRACKING = "ActivityTracking"
    SEMESTER_SUMMARY = "SemesterSummary"


class SettingsScope(str, PyEnum):
    USER = "User"
    CLUB = "Club"
    GLOBAL = "Global"


class AuditLogType(str, PyEnum):
    USER_ACTION = "UserAction"
    SYSTEM_EVENT = "SystemEvent"
    DATA_CHANGE = "DataChange"
    SECURITY_EVENT = "SecurityEvent"
    ERROR = "Error"


class Club(Base):
    __tablename__ = "clubs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    members: Mapped[list["User"]] = relationship(back_populates="club")
    events: Mapped[list["Event"]] = relationship(
        back_populates="club",
        cascade="all, delete-orphan",
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    student_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    system_role: Mapped[SystemRole] = mapped_column(
        _enum(SystemRole, "system_role"), default=SystemRole.MEMBER
    )
    activity_level: Mapped[ActivityLevel] = mapped_column(
        _enum(ActivityLevel, "activity_level"), default=ActivityLevel.ACTIVE
    )
    club_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("clubs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    club: Mapped[Club | None] = relationship(back_populates="members")
    participations: Mapped[list["EventParticipant"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    registration_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[EventStatus] = mapped_column(
        _enum(EventStatus, "event_status"), default=EventStatus.SCHEDULED
    )
    club_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    club: Mapped[Club] = relationship(back_populates="events")
    participants: Mapped[list["EventParticipant"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
    )


class EventParticipant(Base):
    __tablename__ = "event_participants"
    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_event_participants_user_event"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[AttendanceStatus] = mapped_column(
        _enum(AttendanceStatus, "attendance_status"),
        default=AttendanceStatus.REGISTERED,
    )
    registration_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    attendance_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped[User] = relationship(back_populates="participations")
    event: Mapped[Event] = relationship(back_populates="participants")


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[ReportType] = mapped_column(_enum(ReportType, "report_type"))
    content: Mapped[str] = mapped_column(Text, nullable=False)
    generated_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    semester: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # Nullable for system-wide reports
    club_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("clubs.id", ondelete="SET NULL"), nullable=True
    )
    generated_by_user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )


class Setting(Base):
    """Scoped key/value setting (global, per club, or per user)."""

    __tablename__ = "settings"
    __table_args__ = (
        UniqueConstraint(
            "key", "scope", "user_id", "club_id", name="uq_settings_key_scope_owner"
        ),
        Index("ix_settings_scope", "scope"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    club_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=True
    )
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[SettingsScope] = mapped_column(_enum(SettingsScope, "settings_scope"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_timestamp", "timestamp"),
        Index("ix_audit_logs_log_type", "log_type"),
        Index("ix_audit_logs_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[str] = mapped_column(String(2000), default="")
    log_type: Mapped[AuditLogType] = mapped_column(_enum(AuditLogType, "audit_log_type"))
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    additional_data: Mapped[str | None] = mapped_column(Text, nullable=True)


# Parent -> child. Restore inserts in this order and deletes in reverse.
RESTORE_ORDER: tuple[type[Base], ...] = (
    Club,
    User,
    Event,
    EventParticipant,
    Report,
    Setting,
    AuditLog,
)
