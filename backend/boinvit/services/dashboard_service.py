"""
Dashboard statistics and refresh.

WHAT: Computes the headline numbers on a business dashboard and forces a
refresh after a payment lands.

WHY: The numbers are aggregates over bookings and clients, cheap to cache
and wrong the moment a payment or booking changes. They are cached for 5
minutes and invalidated by payment processing and Realtime events.

HOW:
- get_stats(): QueryCache.get_or_load on ("dashboard-stats", business_id)
- force_dashboard_update(): invalidate every dashboard query key for the
  business and insert a `dashboard_refresh` system event, which Supabase
  Realtime fans out to every open dashboard
"""

import calendar
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.dao.booking import BookingDAO
from boinvit.dao.business import ClientDAO
from boinvit.dao.events import SystemEventDAO
from boinvit.services.query_cache import QueryCache

logger = logging.getLogger(__name__)


DASHBOARD_STATS = "dashboard-stats"

# Query keys dropped by a forced refresh, before any booking-specific ones
PAYMENT_QUERY_KEYS = (
    DASHBOARD_STATS,
    "business-revenue",
    "business-data",
    "client-business-transactions",
    "payment-transactions",
    "payments",
)


def dashboard_stats_key(business_id: str) -> tuple:
    return (DASHBOARD_STATS, business_id)


class DashboardService:
    """Dashboard statistics for one business at a time."""

    def __init__(self, session: AsyncSession, cache: QueryCache):
        self.session = session
        self.cache = cache
        self.bookings = BookingDAO(session)
        self.clients = ClientDAO(session)

    async def get_stats(self, business_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Dashboard headline stats, cached for DASHBOARD_CACHE_TTL_SECONDS.

        Returns:
            {"active_bookings_today", "today_revenue", "monthly_bookings",
             "total_clients", "generated_at"}
        """
        return await self.cache.get_or_load(
            dashboard_stats_key(business_id),
            lambda: self.compute_stats(business_id, today),
        )

    async def compute_stats(self, business_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or datetime.utcnow().date()
        month_start = today.replace(day=1)
        month_end = today.replace(day=calendar.monthrange(today.year, today.month)[1])

        active_today = await self.bookings.count_active_on(business_id, today)
        revenue = await self.bookings.revenue_on(business_id, today)
        monthly = await self.bookings.count_active_between(business_id, month_start, month_end)
        clients = await self.clients.count_for_business(business_id)

        return {
            "business_id": business_id,
            "active_bookings_today": active_today,
            "today_revenue": float(revenue),
            "monthly_bookings": monthly,
            "total_clients": clients,
            "generated_at": datetime.utcnow().isoformat(),
        }


async def force_dashboard_update(
    session: AsyncSession,
    cache: QueryCache,
    business_id: str,
    amount: Optional[Decimal] = None,
    reference: Optional[str] = None,
    booking_id: Optional[str] = None,
) -> bool:
    """
    Drop cached dashboard data for a business and ping Realtime.

    Cache failures are logged and don't stop the system event insert.

    Returns:
        True if every cache key was invalidated
    """
    if not business_id:
        logger.error("Cannot force dashboard update: no business id")
        return False

    query_keys: List[Sequence[Any]] = [(name, business_id) for name in PAYMENT_QUERY_KEYS]
    if booking_id:
        query_keys.append(("booking", booking_id))
        query_keys.append(("bookings", business_id))

    ok = True
    for query_key in query_keys:
        try:
            await cache.invalidate(query_key)
        except Exception as e:
            ok = False
            logger.warning(f"Could not invalidate {query_key}: {e}")

    await SystemEventDAO(session).create(
        event_type="dashboard_refresh",
        business_id=business_id,
        meta={
            "trigger": "payment_completion",
            "timestamp": datetime.utcnow().isoformat(),
            "payment_reference": reference or "manual_update",
            "amount": float(amount or 0),
        },
    )

    logger.info(f"Dashboard update forced for business {business_id}")
    return ok
