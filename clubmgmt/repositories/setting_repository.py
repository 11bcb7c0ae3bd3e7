"""Setting repository for scoped key/value lookups."""

from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Setting, SettingsScope


class SettingRepository:
    """Repository for Setting database operations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(
        self,
        key: str,
        scope: SettingsScope,
        *,
        user_id: int | None = None,
        club_id: int | None = None,
    ) -> Setting | None:
        query = select(Setting).where(Setting.key == key, Setting.scope == scope)
        # NULL owners need IS NULL, not "= NULL"
        query = query.where(
            Setting.user_id.is_(None) if user_id is None else Setting.user_id == user_id
        )
        query = query.where(
            Setting.club_id.is_(None) if club_id is None else Setting.club_id == club_id
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_by_scope(self, scope: SettingsScope) -> Sequence[Setting]:
        result = await self.db.execute(
            select(Setting).where(Setting.scope == scope).order_by(Setting.key)
        )
        return result.scalars().all()

    async def delete_by_scope(self, scope: SettingsScope) -> int:
        """Bulk delete; matching objects already in the session are evicted too."""
        result = await self.db.execute(delete(Setting).where(Setting.scope == scope))
        return result.rowcount or 0
