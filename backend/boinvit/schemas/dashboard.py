"""Dashboard and realtime diagnostics response schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class DashboardStats(BaseModel):
    business_id: str
    active_bookings_today: int
    today_revenue: float
    monthly_bookings: int
    total_clients: int
    generated_at: str


class DashboardRefreshResponse(BaseModel):
    business_id: str
    cache_cleared: bool


class RealtimeDiagnostics(BaseModel):
    enabled: bool
    running: bool
    diagnostics: Optional[Dict[str, Any]] = None
    subscriptions: List[Dict[str, Any]] = []
