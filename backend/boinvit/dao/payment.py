"""
Payment transaction DAOs.

WHAT: Reference lookups for idempotent processing, and the due-for-check
query used by background reconciliation.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.dao.base import BaseDAO
from boinvit.models.payment import (
    ClientBusinessTransaction,
    PaymentStatus,
    PaymentTransaction,
)


class PaymentTransactionDAO(BaseDAO[PaymentTransaction]):
    """Data Access Object for PaymentTransaction model."""

    def __init__(self, session: AsyncSession):
        super().__init__(PaymentTransaction, session)

    async def get_by_reference(self, reference: str) -> Optional[PaymentTransaction]:
        return await self.get_one_by("paystack_reference", reference)

    async def get_completed_by_reference(self, reference: str) -> Optional[PaymentTransaction]:
        """
        Get the completed transaction for a reference, if any.

        WHY: This is the idempotency check. A completed reference means the
        charge was already applied and must not be applied again.
        """
        result = await self.session.execute(
            select(PaymentTransaction).where(
                PaymentTransaction.paystack_reference == reference,
                PaymentTransaction.status == PaymentStatus.COMPLETED.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_due_for_status_check(
        self,
        now: datetime,
        max_attempts: int,
        limit: int = 50,
    ) -> List[PaymentTransaction]:
        """
        Pending transactions whose next status check is due.

        Rows with no `next_status_check_at` are due immediately.
        """
        result = await self.session.execute(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.status == PaymentStatus.PENDING.value,
                PaymentTransaction.paystack_reference.is_not(None),
                PaymentTransaction.status_check_attempts < max_attempts,
                or_(
                    PaymentTransaction.next_status_check_at.is_(None),
                    PaymentTransaction.next_status_check_at <= now,
                ),
            )
            .order_by(PaymentTransaction.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_exhausted(self, max_attempts: int) -> List[PaymentTransaction]:
        """Pending transactions that used up every status check."""
        result = await self.session.execute(
            select(PaymentTransaction).where(
                PaymentTransaction.status == PaymentStatus.PENDING.value,
                PaymentTransaction.status_check_attempts >= max_attempts,
            )
        )
        return list(result.scalars().all())


class ClientBusinessTransactionDAO(BaseDAO[ClientBusinessTransaction]):
    """Data Access Object for ClientBusinessTransaction model."""

    def __init__(self, session: AsyncSession):
        super().__init__(ClientBusinessTransaction, session)

    async def get_by_reference(self, reference: str) -> Optional[ClientBusinessTransaction]:
        """Match either the platform reference or the Paystack reference."""
        result = await self.session.execute(
            select(ClientBusinessTransaction).where(
                or_(
                    ClientBusinessTransaction.payment_reference == reference,
                    ClientBusinessTransaction.paystack_reference == reference,
                )
            )
        )
        return result.scalars().first()
