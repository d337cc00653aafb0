"""
Base Data Access Object (DAO) class.

WHY: Services never build queries themselves; they go through a DAO so the
webhook, polling and dashboard code can be tested against SQLite with the
same calls that run against Supabase Postgres.

Writes only flush. Committing is the caller's decision, because a webhook
applies several rows (transaction, subscription, booking) as one unit.
"""

from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseDAO(Generic[ModelType]):
    """Lookups and flush-only writes shared by every model's DAO."""

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def create(self, **values: Any) -> ModelType:
        """
        Add a row and flush it so defaults (id, timestamps) are populated.

        Raises:
            IntegrityError: On a duplicate unique value such as a payment
                reference
        """
        row = self.model(**values)
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return row

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        return await self.session.get(self.model, id)

    async def get_one_by(self, column: str, value: Any) -> Optional[ModelType]:
        """First row whose `column` equals `value` (unique columns only)."""
        result = await self.session.execute(
            select(self.model).where(getattr(self.model, column) == value).limit(1)
        )
        return result.scalar_one_or_none()

    async def update(self, id: str, **values: Any) -> Optional[ModelType]:
        row = await self.get_by_id(id)
        if row is None:
            return None

        for column, value in values.items():
            setattr(row, column, value)
        await self.session.flush()
        return row

    async def count(self, **filters: Any) -> int:
        """COUNT(*) with equality filters, e.g. count(business_id=..., is_active=True)."""
        query = select(func.count()).select_from(self.model)
        for column, value in filters.items():
            query = query.where(getattr(self.model, column) == value)
        result = await self.session.execute(query)
        return int(result.scalar_one())
