"""
Subscription API endpoints.

WHAT:
1. GET /subscriptions/plans - Plan catalogue with KES prices
2. GET /businesses/{id}/subscription - Current plan status
3. POST /businesses/{id}/subscription/trial - Start the 14 day trial
4. GET /businesses/{id}/subscription/limits - Usage against plan limits
5. POST /businesses/{id}/subscription/checkout - Paystack checkout
6. POST /businesses/{id}/subaccount - Split payment subaccount
7. POST /businesses/{id}/platform-balance/clear - Pay platform dues

SECURITY: Every business route resolves the business through
get_owned_business, so other tenants' businesses are a 404.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.deps import get_owned_business
from boinvit.core.exceptions import BusinessRuleViolation
from boinvit.db.session import get_db
from boinvit.models.business import Business
from boinvit.models.subscription import PLAN_LIMITS, PLAN_PRICES, TRIAL_DAYS
from boinvit.schemas.subscription import (
    CheckoutRequest,
    CheckoutResponse,
    LimitsResponse,
    PlanInfo,
    PlansResponse,
    PlatformClearanceRequest,
    PlatformClearanceResponse,
    SubaccountRequest,
    SubaccountResponse,
    SubscriptionStatusResponse,
)
from boinvit.services.paystack_client import PaystackClient, get_paystack_client
from boinvit.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

plans_router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])
router = APIRouter(prefix="/businesses/{business_id}", tags=["Subscriptions"])


@plans_router.get("/plans", response_model=PlansResponse, summary="List plans")
async def list_plans() -> PlansResponse:
    """All plans with limits and per-interval prices (KES)."""
    plans = [
        PlanInfo(
            plan=plan,
            staff_limit=limits["staff_limit"],
            bookings_limit=limits["bookings_limit"],
            prices={interval: float(price) for interval, price in PLAN_PRICES.get(plan, {}).items()},
        )
        for plan, limits in PLAN_LIMITS.items()
    ]
    return PlansResponse(plans=plans, trial_days=TRIAL_DAYS)


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionStatusResponse:
    info = await SubscriptionService(db).get_status(business.id)
    return SubscriptionStatusResponse(**info.to_dict())


@router.post(
    "/subscription/trial",
    response_model=SubscriptionStatusResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_trial(
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionStatusResponse:
    """
    Start the free trial.

    Raises:
        BusinessRuleViolation (422): The business already has a subscription
    """
    service = SubscriptionService(db)
    if await service.start_trial(business) is None:
        raise BusinessRuleViolation(message="Business already has a subscription")

    await db.commit()
    info = await service.get_status(business.id)
    return SubscriptionStatusResponse(**info.to_dict())


@router.get("/subscription/limits", response_model=LimitsResponse)
async def get_limits(
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
) -> LimitsResponse:
    limits = await SubscriptionService(db).check_limits(business.id)
    return LimitsResponse(**limits.to_dict())


@router.post("/subscription/checkout", response_model=CheckoutResponse)
async def create_checkout(
    data: CheckoutRequest,
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
) -> CheckoutResponse:
    """
    Start a Paystack checkout for a paid plan.

    The subscription is only activated when the charge succeeds.
    """
    result = await SubscriptionService(db, paystack).create_checkout(
        business,
        plan_type=data.plan_type.value,
        email=data.email,
        interval=data.billing_interval,
        callback_url=data.callback_url,
    )
    await db.commit()
    return CheckoutResponse(**result)


@router.post("/subaccount", response_model=SubaccountResponse)
async def create_subaccount(
    data: SubaccountRequest,
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
) -> SubaccountResponse:
    """Create a Paystack split subaccount (7% platform share)."""
    result = await SubscriptionService(db, paystack).create_subaccount(
        business,
        settlement_bank=data.settlement_bank,
        account_number=data.account_number,
    )
    await db.commit()
    return SubaccountResponse(**result)


@router.post("/platform-balance/clear", response_model=PlatformClearanceResponse)
async def clear_platform_balance(
    data: PlatformClearanceRequest,
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
) -> PlatformClearanceResponse:
    """
    Pay the platform balance and any subscription balance due.

    Raises:
        BusinessRuleViolation (400): Nothing is owed
    """
    result = await SubscriptionService(db, paystack).initiate_platform_clearance(
        business, email=data.email
    )
    await db.commit()
    return PlatformClearanceResponse(**result)
