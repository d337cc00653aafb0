"""Security and system event DAOs."""

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.dao.base import BaseDAO
from boinvit.models.events import SecurityEvent, SystemEvent


class SecurityEventDAO(BaseDAO[SecurityEvent]):
    """Append-only access to security events."""

    def __init__(self, session: AsyncSession):
        super().__init__(SecurityEvent, session)

    async def get_recent(self, event_type: str, limit: int = 50) -> List[SecurityEvent]:
        result = await self.session.execute(
            select(SecurityEvent)
            .where(SecurityEvent.event_type == event_type)
            .order_by(SecurityEvent.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class SystemEventDAO(BaseDAO[SystemEvent]):
    def __init__(self, session: AsyncSession):
        super().__init__(SystemEvent, session)
