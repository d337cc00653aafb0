"""
Realtime-driven dashboard cache invalidation.

WHAT: Subscribes the RealtimeManager to every table that feeds dashboard
numbers and invalidates the affected business's cached queries on each
change.

WHY: Changes made outside this API (Supabase dashboard edits, database
triggers, the booking pages writing straight to Supabase) still have to
refresh cached stats.

HOW: One unfiltered channel per table. The business id is read from the
changed row (new row, or old row for deletes) and mapped to that table's
query keys.
"""

import logging
from typing import Dict, List, Optional, Tuple

from boinvit.services.dashboard_service import DASHBOARD_STATS
from boinvit.services.realtime import RealtimeManager, RealtimePayload, SubscriptionOptions

logger = logging.getLogger(__name__)


# Table -> query names invalidated for the row's business
TABLE_QUERY_KEYS: Dict[str, Tuple[str, ...]] = {
    "bookings": (DASHBOARD_STATS, "bookings"),
    "payment_transactions": (DASHBOARD_STATS, "payment-transactions", "business-revenue"),
    "payments": (DASHBOARD_STATS, "payments", "business-revenue"),
    "client_business_transactions": (
        DASHBOARD_STATS,
        "client-business-transactions",
        "business-revenue",
    ),
    "clients": (DASHBOARD_STATS, "clients"),
    "system_events": (DASHBOARD_STATS, "business-data"),
}


def business_id_from(payload: RealtimePayload) -> Optional[str]:
    row = payload.new or payload.old or {}
    business_id = row.get("business_id")
    return str(business_id) if business_id else None


class DashboardSyncService:
    """
    Keeps cached dashboard data in step with database changes.

    Example:
        sync = DashboardSyncService(manager)
        await sync.start()
        ...
        await sync.stop()
    """

    def __init__(self, manager: RealtimeManager, tables: Optional[Dict[str, Tuple[str, ...]]] = None):
        self.manager = manager
        self.tables = tables or TABLE_QUERY_KEYS
        self._keys: List[str] = []

    @property
    def is_running(self) -> bool:
        return bool(self._keys)

    async def start(self) -> List[str]:
        """Subscribe to every mapped table; returns the channel keys."""
        if self._keys:
            return self._keys

        for table in self.tables:
            key = await self.manager.subscribe(SubscriptionOptions(table=table), self.handle_change)
            self._keys.append(key)

        logger.info(f"Dashboard sync watching {len(self._keys)} tables")
        return self._keys

    async def stop(self) -> None:
        for key in self._keys:
            await self.manager.unsubscribe(key, self.handle_change)
        self._keys = []

    async def handle_change(self, payload: RealtimePayload) -> bool:
        """
        Invalidate the changed row's business queries.

        Returns:
            True if something was invalidated
        """
        business_id = business_id_from(payload)
        names = self.tables.get(payload.table)
        if not business_id or not names:
            logger.debug(f"Ignoring {payload.event_type} on {payload.table}: no business id")
            return False

        logger.debug(f"{payload.table} {payload.event_type} for business {business_id}")
        return await self.manager.invalidate_queries([(name, business_id) for name in names])
