"""Service layer for backup, restore and maintenance logic.

Layer hierarchy:
    Callers (desktop UI, scheduler) -> Services -> Repositories (Database)

Services should:
- Take an AsyncSession and an optional ServiceContext for attribution
- Orchestrate calls to repositories
- Return dataclasses or schema documents, never raw rows
- Raise the errors from services.backup_errors, chained to their cause

Services should NOT:
- Directly execute SQL queries (use repositories), except maintenance
  statements such as ANALYZE
- Rely on a global "current user"
"""
