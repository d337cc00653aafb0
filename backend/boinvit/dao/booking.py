"""
Booking DAO.

WHAT: Booking lookups plus the aggregate queries behind dashboard stats.

HOW: Aggregates are computed in SQL (COUNT/SUM) so the dashboard never
loads individual bookings.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.dao.base import BaseDAO
from boinvit.models.booking import (
    ACTIVE_BOOKING_STATUSES,
    PAID_STATUSES,
    Booking,
    BookingStatus,
)


class BookingDAO(BaseDAO[Booking]):
    """Data Access Object for Booking model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Booking, session)

    async def get_for_business(self, booking_id: str, business_id: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(Booking).where(Booking.id == booking_id, Booking.business_id == business_id)
        )
        return result.scalar_one_or_none()

    async def count_active_on(self, business_id: str, day: date) -> int:
        """Confirmed or completed bookings on a given day."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.business_id == business_id,
                Booking.booking_date == day,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
        )
        return int(result.scalar_one())

    async def revenue_on(self, business_id: str, day: date) -> Decimal:
        """Sum of paid, confirmed/completed bookings on a given day."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(Booking.total_amount), 0)).where(
                Booking.business_id == business_id,
                Booking.booking_date == day,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                Booking.payment_status.in_(PAID_STATUSES),
            )
        )
        return Decimal(str(result.scalar_one()))

    async def count_active_between(self, business_id: str, start: date, end: date) -> int:
        """Confirmed or completed bookings with start <= booking_date <= end."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.business_id == business_id,
                Booking.booking_date >= start,
                Booking.booking_date <= end,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
        )
        return int(result.scalar_one())

    async def count_not_cancelled_between(self, business_id: str, start: date, end: date) -> int:
        """Bookings that count against the plan's monthly booking limit."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.business_id == business_id,
                Booking.booking_date >= start,
                Booking.booking_date <= end,
                Booking.status != BookingStatus.CANCELLED.value,
            )
        )
        return int(result.scalar_one())
