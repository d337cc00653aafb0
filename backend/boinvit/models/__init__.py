"""
Database models package.

WHY: Importing every model here lets Alembic and the test suite see the
full metadata.
"""

from boinvit.models.base import Base, TimestampMixin, PrimaryKeyMixin, JSONType
from boinvit.models.business import Business, Service, Staff, Client
from boinvit.models.booking import (
    Booking,
    BookingStatus,
    BookingPaymentStatus,
    ACTIVE_BOOKING_STATUSES,
    PAID_STATUSES,
)
from boinvit.models.payment import (
    PaymentTransaction,
    ClientBusinessTransaction,
    PaymentStatus,
    PaymentMethod,
    TransactionType,
)
from boinvit.models.subscription import (
    Subscription,
    PlanType,
    SubscriptionStatus,
    PLAN_LIMITS,
    PLAN_PRICES,
    PAID_PLANS,
    BILLING_INTERVAL_MONTHS,
    TRIAL_DAYS,
)
from boinvit.models.events import SecurityEvent, SystemEvent

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "JSONType",
    "Business",
    "Service",
    "Staff",
    "Client",
    "Booking",
    "BookingStatus",
    "BookingPaymentStatus",
    "ACTIVE_BOOKING_STATUSES",
    "PAID_STATUSES",
    "PaymentTransaction",
    "ClientBusinessTransaction",
    "PaymentStatus",
    "PaymentMethod",
    "TransactionType",
    "Subscription",
    "PlanType",
    "SubscriptionStatus",
    "PLAN_LIMITS",
    "PLAN_PRICES",
    "PAID_PLANS",
    "BILLING_INTERVAL_MONTHS",
    "TRIAL_DAYS",
    "SecurityEvent",
    "SystemEvent",
]
