"""
Subscription service.

WHAT: Plans, trials, limits and the Paystack flows that pay for them
(checkout, split subaccount, platform balance clearance).

WHY: Payment confirmation (webhook, M-Pesa status, reconciliation) only
ever *applies* a paid plan. Everything that decides what a plan allows
or costs lives here.

HOW:
- Limits and prices come from the tables in models.subscription
- Billing periods are computed with calendar months (end-of-month dates
  are clamped, Jan 31 + 1 month = Feb 28/29)
- Checkout and clearance record a pending PaymentTransaction so the
  reconciliation job can finish them if the webhook never arrives
"""

import calendar
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.config import settings
from boinvit.core.exceptions import BusinessRuleViolation, InputError
from boinvit.dao.booking import BookingDAO
from boinvit.dao.business import BusinessDAO, StaffDAO
from boinvit.dao.payment import PaymentTransactionDAO
from boinvit.dao.subscription import SubscriptionDAO
from boinvit.models.business import Business
from boinvit.models.payment import PaymentMethod, PaymentStatus, TransactionType
from boinvit.models.subscription import (
    BILLING_INTERVAL_MONTHS,
    PAID_PLANS,
    PLAN_LIMITS,
    PLAN_PRICES,
    TRIAL_DAYS,
    PlanType,
    Subscription,
    SubscriptionStatus,
)
from boinvit.services.paystack_client import PaystackClient
from boinvit.services.references import platform_clearance_reference, subscription_reference

logger = logging.getLogger(__name__)


PLATFORM_SPLIT_PERCENTAGE = Decimal("7.0")
CHECKOUT_CHANNELS = ["card", "bank", "ussd", "mobile_money"]


# ============================================================================
# Billing period helpers
# ============================================================================


def add_months(start: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def period_end_for(interval: Optional[str], start: Optional[datetime] = None) -> datetime:
    """End of a billing period; unknown intervals are treated as monthly."""
    months = BILLING_INTERVAL_MONTHS.get(interval or "monthly", 1)
    return add_months(start or datetime.utcnow(), months)


def plan_limits(plan_type: str) -> Dict[str, Optional[int]]:
    return dict(PLAN_LIMITS.get(plan_type, PLAN_LIMITS[PlanType.STARTER.value]))


def to_minor_units(amount: Decimal) -> int:
    """KES 1020 -> 102000"""
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


# ============================================================================
# Results
# ============================================================================


@dataclass
class SubscriptionStatusInfo:
    has_subscription: bool
    plan_type: Optional[str] = None
    status: Optional[str] = None
    is_active: bool = False
    is_trial: bool = False
    is_trial_expired: bool = False
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    days_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LimitCheck:
    plan_type: Optional[str]
    unlimited: bool
    staff_count: int = 0
    staff_limit: Optional[int] = None
    bookings_this_month: int = 0
    bookings_limit: Optional[int] = None

    @property
    def can_add_staff(self) -> bool:
        return self.staff_limit is None or self.staff_count < self.staff_limit

    @property
    def can_add_booking(self) -> bool:
        return self.bookings_limit is None or self.bookings_this_month < self.bookings_limit

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["can_add_staff"] = self.can_add_staff
        data["can_add_booking"] = self.can_add_booking
        return data


# ============================================================================
# Service
# ============================================================================


class SubscriptionService:
    """Plan management and Paystack subscription flows for a business."""

    def __init__(self, session: AsyncSession, paystack: Optional[PaystackClient] = None):
        self.session = session
        self.paystack = paystack or PaystackClient()
        self.subscriptions = SubscriptionDAO(session)
        self.transactions = PaymentTransactionDAO(session)
        self.businesses = BusinessDAO(session)

    async def start_trial(self, business: Business) -> Optional[Subscription]:
        """
        Start the 14 day unlimited trial.

        Returns:
            The new subscription, or None if the business already has one
        """
        if await self.subscriptions.get_by_business_id(business.id):
            return None

        trial_end = datetime.utcnow() + timedelta(days=TRIAL_DAYS)
        limits = plan_limits(PlanType.TRIAL.value)
        subscription = await self.subscriptions.create(
            user_id=business.user_id,
            business_id=business.id,
            plan_type=PlanType.TRIAL.value,
            status=SubscriptionStatus.ACTIVE.value,
            trial_ends_at=trial_end,
            current_period_end=trial_end,
            **limits,
        )
        logger.info(f"Trial started for business {business.id}, ends {trial_end.isoformat()}")
        return subscription

    async def get_status(self, business_id: str) -> SubscriptionStatusInfo:
        subscription = await self.subscriptions.get_by_business_id(business_id)
        if subscription is None:
            return SubscriptionStatusInfo(has_subscription=False)

        now = datetime.utcnow()
        period_end = subscription.current_period_end
        is_trial = subscription.plan_type == PlanType.TRIAL.value
        is_active = subscription.status == SubscriptionStatus.ACTIVE.value and (
            period_end is None or period_end > now
        )
        trial_expired = bool(
            is_trial and subscription.trial_ends_at and subscription.trial_ends_at <= now
        )

        return SubscriptionStatusInfo(
            has_subscription=True,
            plan_type=subscription.plan_type,
            status=subscription.status,
            is_active=is_active,
            is_trial=is_trial,
            is_trial_expired=trial_expired,
            trial_ends_at=subscription.trial_ends_at,
            current_period_end=period_end,
            days_remaining=max((period_end - now).days, 0) if period_end else None,
        )

    async def check_limits(self, business_id: str) -> LimitCheck:
        """
        Compare active staff and this month's bookings against the plan.

        Premium, trial, pay-as-you-go and businesses without a subscription
        are unlimited.
        """
        subscription = await self.subscriptions.get_by_business_id(business_id)
        if subscription is None:
            return LimitCheck(plan_type=None, unlimited=True)

        if subscription.staff_limit is None and subscription.bookings_limit is None:
            return LimitCheck(plan_type=subscription.plan_type, unlimited=True)

        today = datetime.utcnow().date()
        month_start = today.replace(day=1)
        month_end = today.replace(day=calendar.monthrange(today.year, today.month)[1])

        staff_count = await StaffDAO(self.session).count_active(business_id)
        bookings = await BookingDAO(self.session).count_not_cancelled_between(
            business_id, month_start, month_end
        )

        return LimitCheck(
            plan_type=subscription.plan_type,
            unlimited=False,
            staff_count=staff_count,
            staff_limit=subscription.staff_limit,
            bookings_this_month=bookings,
            bookings_limit=subscription.bookings_limit,
        )

    async def create_checkout(
        self,
        business: Business,
        plan_type: str,
        email: str,
        interval: str = "monthly",
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a Paystack checkout for a paid plan.

        Raises:
            InputError: Unknown plan or billing interval
            PaystackError: Paystack rejected the initialization
        """
        if plan_type not in PAID_PLANS:
            raise InputError(message="Invalid plan type", plan_type=plan_type)

        amount = PLAN_PRICES[plan_type].get(interval)
        if amount is None:
            raise InputError(message="Invalid billing interval", interval=interval)

        reference = subscription_reference()
        metadata = {
            "business_id": business.id,
            "plan_type": plan_type,
            "billing_interval": interval,
            "payment_type": TransactionType.SUBSCRIPTION.value,
            "customer_email": email,
        }

        data = await self.paystack.initialize_transaction(
            email=email,
            amount_minor=to_minor_units(amount),
            reference=reference,
            currency="KES",
            callback_url=callback_url or f"{settings.FRONTEND_URL}/subscription/callback",
            metadata=metadata,
            channels=CHECKOUT_CHANNELS,
        )

        await self.transactions.create(
            business_id=business.id,
            amount=amount,
            currency="KES",
            status=PaymentStatus.PENDING.value,
            payment_method=PaymentMethod.PAYSTACK.value,
            paystack_reference=data.get("reference") or reference,
            transaction_type=TransactionType.SUBSCRIPTION.value,
            meta=metadata,
            next_status_check_at=datetime.utcnow() + timedelta(seconds=30),
        )

        logger.info(f"Checkout created for business {business.id}: {plan_type}/{interval}")
        return {
            "authorization_url": data.get("authorization_url"),
            "access_code": data.get("access_code"),
            "reference": data.get("reference") or reference,
            "amount": float(amount),
            "currency": "KES",
        }

    async def create_subaccount(
        self,
        business: Business,
        settlement_bank: str,
        account_number: str,
    ) -> Dict[str, Any]:
        """
        Create a Paystack split subaccount (7% to the platform).

        The subaccount code is stored on the business and, when one exists,
        on its subscription with auto-split enabled.
        """
        data = await self.paystack.create_subaccount(
            business_name=business.name,
            settlement_bank=settlement_bank,
            account_number=account_number,
            percentage_charge=float(PLATFORM_SPLIT_PERCENTAGE),
            primary_contact_email=business.email,
            description=(
                f"Auto-split subaccount for {business.name} - 93% to business, 7% to platform"
            ),
        )
        code = data.get("subaccount_code")
        if not code:
            raise BusinessRuleViolation(message="Paystack did not return a subaccount code")

        business.paystack_subaccount_id = code

        subscription = await self.subscriptions.get_by_business_id(business.id)
        if subscription is not None:
            subscription.auto_split_enabled = True
            subscription.paystack_subaccount_id = code
            subscription.split_percentage = PLATFORM_SPLIT_PERCENTAGE
        else:
            logger.warning(f"Business {business.id} has no subscription to enable auto-split on")

        await self.session.flush()

        return {
            "subaccount_code": code,
            "settlement_bank": data.get("settlement_bank"),
            "account_number": data.get("account_number"),
            "percentage_charge": data.get("percentage_charge", float(PLATFORM_SPLIT_PERCENTAGE)),
        }

    async def initiate_platform_clearance(self, business: Business, email: Optional[str] = None) -> Dict[str, Any]:
        """
        Start a payment for everything the business owes the platform.

        Raises:
            BusinessRuleViolation: Nothing is owed
        """
        subscription = await self.subscriptions.get_by_business_id(business.id)
        platform_balance = Decimal(business.platform_balance or 0)
        subscription_balance = Decimal(subscription.subscription_balance_due or 0) if subscription else Decimal("0")
        total_due = platform_balance + subscription_balance

        if total_due <= 0:
            raise BusinessRuleViolation(message="No balance due", status_code=400)

        payer_email = email or business.email
        if not payer_email:
            raise InputError(message="An email address is required for payment")

        reference = platform_clearance_reference(business.id)
        metadata = {
            "payment_type": TransactionType.PLATFORM_CLEARANCE.value,
            "business_id": business.id,
            "business_name": business.name,
            "platform_balance": float(platform_balance),
            "subscription_balance": float(subscription_balance),
            "total_due": float(total_due),
        }

        data = await self.paystack.initialize_transaction(
            email=payer_email,
            amount_minor=to_minor_units(total_due),
            reference=reference,
            currency="KES",
            callback_url=f"{settings.FRONTEND_URL}/payment-success",
            metadata=metadata,
        )

        await self.transactions.create(
            business_id=business.id,
            amount=total_due,
            currency="KES",
            status=PaymentStatus.PENDING.value,
            payment_method=PaymentMethod.PAYSTACK.value,
            paystack_reference=data.get("reference") or reference,
            transaction_type=TransactionType.PLATFORM_CLEARANCE.value,
            meta=metadata,
            next_status_check_at=datetime.utcnow() + timedelta(seconds=30),
        )

        return {
            "authorization_url": data.get("authorization_url"),
            "reference": data.get("reference") or reference,
            "amount": float(total_due),
            "currency": "KES",
        }
