"""Repository layer for database operations.

Repositories encapsulate all database queries, keeping services focused on
orchestration. This separation provides:
- Single source of truth for database operations
- Easier testing (repositories can be mocked or replaced by recording fakes)
- Reusable queries across backup, restore, export and maintenance
"""

from repositories.audit_repository import AuditLogRepository
from repositories.backup_repository import BackupRepository
from repositories.setting_repository import SettingRepository
from repositories.utils import log_slow_query

__all__ = [
    "AuditLogRepository",
    "BackupRepository",
    "SettingRepository",
    "log_slow_query",
]
