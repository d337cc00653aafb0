"""
Business, staff and client DAOs.

WHY: Ownership checks and tenant-scoped counts are needed by the API
dependencies, subscription limits and dashboard statistics.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.dao.base import BaseDAO
from boinvit.models.business import Business, Client, Staff


class BusinessDAO(BaseDAO[Business]):
    """Data Access Object for Business model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Business, session)

    async def get_active(self, business_id: str) -> Optional[Business]:
        """
        Get a business only if it is active.

        WHY: Payments for a deactivated business must not activate anything.
        """
        result = await self.session.execute(
            select(Business).where(Business.id == business_id, Business.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def get_owned(self, business_id: str, user_id: str) -> Optional[Business]:
        """Get a business if (and only if) `user_id` owns it."""
        result = await self.session.execute(
            select(Business).where(Business.id == business_id, Business.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def reset_platform_balance(self, business_id: str) -> Optional[Business]:
        return await self.update(business_id, platform_balance=Decimal("0"))


class StaffDAO(BaseDAO[Staff]):
    """Data Access Object for Staff model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Staff, session)

    async def count_active(self, business_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Staff)
            .where(Staff.business_id == business_id, Staff.is_active.is_(True))
        )
        return int(result.scalar_one())


class ClientDAO(BaseDAO[Client]):
    """Data Access Object for Client model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Client, session)

    async def count_for_business(self, business_id: str) -> int:
        return await self.count(business_id=business_id)
