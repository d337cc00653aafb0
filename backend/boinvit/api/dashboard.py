"""
Dashboard API endpoints.

WHAT:
1. GET /businesses/{id}/dashboard/stats - Cached headline numbers
2. POST /businesses/{id}/dashboard/refresh - Drop cached data and ping
   open dashboards
3. GET /realtime/status - Realtime channel diagnostics
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.auth import AuthenticatedUser
from boinvit.core.deps import get_current_user, get_owned_business
from boinvit.db.session import get_db
from boinvit.models.business import Business
from boinvit.schemas.dashboard import DashboardRefreshResponse, DashboardStats, RealtimeDiagnostics
from boinvit.services.dashboard_service import DashboardService, force_dashboard_update
from boinvit.services.query_cache import QueryCache, get_query_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses/{business_id}/dashboard", tags=["Dashboard"])
realtime_router = APIRouter(prefix="/realtime", tags=["Realtime"])


@router.get("/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
) -> DashboardStats:
    """Today's bookings and revenue, this month's bookings, client count (cached 5 min)."""
    stats = await DashboardService(db, cache).get_stats(business.id)
    return DashboardStats(**stats)


@router.post("/refresh", response_model=DashboardRefreshResponse)
async def refresh_dashboard(
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
) -> DashboardRefreshResponse:
    cleared = await force_dashboard_update(db, cache, business.id)
    await db.commit()
    return DashboardRefreshResponse(business_id=business.id, cache_cleared=cleared)


@realtime_router.get("/status", response_model=RealtimeDiagnostics)
async def realtime_status(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> RealtimeDiagnostics:
    """Channel status, reconnect attempts and errors of the dashboard sync."""
    manager = getattr(request.app.state, "realtime_manager", None)
    sync = getattr(request.app.state, "dashboard_sync", None)

    if manager is None:
        return RealtimeDiagnostics(enabled=False, running=False)

    return RealtimeDiagnostics(
        enabled=True,
        running=bool(sync and sync.is_running),
        diagnostics=manager.get_diagnostics(),
        subscriptions=manager.get_active_subscriptions(),
    )
