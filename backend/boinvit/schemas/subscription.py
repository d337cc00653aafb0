"""
Subscription schemas for API request/response validation.

WHAT: Plan catalogue, checkout, subaccount and platform clearance bodies,
plus status and limit responses.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from boinvit.models.subscription import BILLING_INTERVAL_MONTHS, PlanType


class PlanInfo(BaseModel):
    plan: str
    staff_limit: Optional[int] = Field(description="Maximum active staff (null = unlimited)")
    bookings_limit: Optional[int] = Field(description="Maximum bookings per month (null = unlimited)")
    prices: Dict[str, float] = Field(description="Price in KES per billing interval")


class PlansResponse(BaseModel):
    plans: List[PlanInfo]
    trial_days: int


class CheckoutRequest(BaseModel):
    plan_type: PlanType
    email: EmailStr
    billing_interval: str = Field(default="monthly", pattern=f"^({'|'.join(BILLING_INTERVAL_MONTHS)})$")
    callback_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    authorization_url: Optional[str] = None
    access_code: Optional[str] = None
    reference: str
    amount: float
    currency: str


class SubaccountRequest(BaseModel):
    settlement_bank: str = Field(min_length=1, description="Paystack bank code")
    account_number: str = Field(min_length=5, max_length=20)


class SubaccountResponse(BaseModel):
    subaccount_code: str
    settlement_bank: Optional[str] = None
    account_number: Optional[str] = None
    percentage_charge: float


class PlatformClearanceRequest(BaseModel):
    email: Optional[EmailStr] = None


class PlatformClearanceResponse(BaseModel):
    authorization_url: Optional[str] = None
    reference: str
    amount: float
    currency: str


class SubscriptionStatusResponse(BaseModel):
    has_subscription: bool
    plan_type: Optional[str] = None
    status: Optional[str] = None
    is_active: bool = False
    is_trial: bool = False
    is_trial_expired: bool = False
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    days_remaining: Optional[int] = None


class LimitsResponse(BaseModel):
    plan_type: Optional[str] = None
    unlimited: bool
    staff_count: int
    staff_limit: Optional[int] = None
    bookings_this_month: int
    bookings_limit: Optional[int] = None
    can_add_staff: bool
    can_add_booking: bool
