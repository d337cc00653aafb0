"""
Subscription DAO.

WHY: Subscriptions are keyed on business_id (one per business), and a paid
charge is applied as an upsert on that key.
"""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.dao.base import BaseDAO
from boinvit.models.subscription import Subscription


class SubscriptionDAO(BaseDAO[Subscription]):
    """Data Access Object for Subscription model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Subscription, session)

    async def get_by_business_id(self, business_id: str) -> Optional[Subscription]:
        """
        Get the subscription for a business.

        Args:
            business_id: Business ID

        Returns:
            Subscription if found, None otherwise
        """
        result = await self.session.execute(
            select(Subscription).where(Subscription.business_id == business_id)
        )
        return result.scalar_one_or_none()

    async def upsert_for_business(self, business_id: str, **values: Any) -> Subscription:
        """
        Insert or update the subscription row for a business.

        HOW: Select then update-in-place or insert inside the caller's
        transaction. The unique constraint on business_id rejects a
        concurrent duplicate insert, which fails the webhook with 500 so
        Paystack redelivers it.
        """
        subscription = await self.get_by_business_id(business_id)
        if subscription is None:
            return await self.create(business_id=business_id, **values)

        for field, value in values.items():
            setattr(subscription, field, value)
        await self.session.flush()
        await self.session.refresh(subscription)
        return subscription
