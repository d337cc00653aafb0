"""
Subscription model.

WHY: One subscription per business (unique business_id) so that a paid
Paystack charge can be applied as an upsert on business_id. Limits are
copied onto the row when the plan changes; None means unlimited.
"""

import enum
from decimal import Decimal

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String

from boinvit.models.base import Base, PrimaryKeyMixin, TimestampMixin


class PlanType(str, enum.Enum):
    """Available plans."""

    TRIAL = "trial"
    PAYG = "payg"
    STARTER = "starter"
    MEDIUM = "medium"
    PREMIUM = "premium"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Plans that can be bought through Paystack
PAID_PLANS = (PlanType.STARTER.value, PlanType.MEDIUM.value, PlanType.PREMIUM.value)

# None = unlimited
PLAN_LIMITS = {
    PlanType.TRIAL.value: {"staff_limit": None, "bookings_limit": None},
    PlanType.PAYG.value: {"staff_limit": None, "bookings_limit": None},
    PlanType.STARTER.value: {"staff_limit": 5, "bookings_limit": 1000},
    PlanType.MEDIUM.value: {"staff_limit": 15, "bookings_limit": 3000},
    PlanType.PREMIUM.value: {"staff_limit": None, "bookings_limit": None},
}

# Price in KES per plan and billing interval
PLAN_PRICES = {
    PlanType.STARTER.value: {
        "monthly": Decimal("1020"),
        "quarterly": Decimal("2907"),
        "biannual": Decimal("5508"),
        "annual": Decimal("10404"),
        "2year": Decimal("19584"),
        "3year": Decimal("27540"),
    },
    PlanType.MEDIUM.value: {
        "monthly": Decimal("2900"),
        "quarterly": Decimal("8265"),
        "biannual": Decimal("15660"),
        "annual": Decimal("29580"),
        "2year": Decimal("55680"),
        "3year": Decimal("78300"),
    },
    PlanType.PREMIUM.value: {
        "monthly": Decimal("9900"),
        "quarterly": Decimal("28215"),
        "biannual": Decimal("53460"),
        "annual": Decimal("100980"),
        "2year": Decimal("190080"),
        "3year": Decimal("267300"),
    },
}

TRIAL_DAYS = 14

# Billing interval name -> months
BILLING_INTERVAL_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "biannual": 6,
    "annual": 12,
    "2year": 24,
    "3year": 36,
}


class Subscription(Base, PrimaryKeyMixin, TimestampMixin):
    """A business's current plan and billing state."""

    __tablename__ = "subscriptions"

    user_id = Column(String(36), nullable=False, index=True)
    business_id = Column(
        String(36),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    plan_type = Column(String(16), nullable=False, default=PlanType.TRIAL.value)
    status = Column(String(16), nullable=False, default=SubscriptionStatus.ACTIVE.value)

    trial_ends_at = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    payment_interval = Column(String(16), nullable=True, default="monthly")

    staff_limit = Column(Integer, nullable=True)
    bookings_limit = Column(Integer, nullable=True)

    subscription_balance_due = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    auto_split_enabled = Column(Boolean, nullable=False, default=False)
    paystack_subaccount_id = Column(String(64), nullable=True)
    split_percentage = Column(Numeric(5, 2), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, business_id={self.business_id}, "
            f"plan={self.plan_type}, status={self.status})>"
        )
