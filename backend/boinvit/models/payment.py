"""
Payment transaction models.

WHAT: PaymentTransaction is the platform ledger (subscriptions, client
payments, clearances); ClientBusinessTransaction tracks money a client pays
a business through the platform.

WHY: `paystack_reference` is unique, which is what makes webhook and
status-check processing idempotent: a reference that is already completed
is never applied twice.
"""

import enum
from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String

from boinvit.models.base import Base, JSONType, PrimaryKeyMixin, TimestampMixin


class PaymentStatus(str, enum.Enum):
    """Normalized transaction statuses."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionType(str, enum.Enum):
    """What a payment was for."""

    SUBSCRIPTION = "subscription"
    CLIENT_TO_BUSINESS = "client_to_business"
    BOOKING_PAYMENT = "booking_payment"
    PLATFORM_CLEARANCE = "platform_clearance"


class PaymentMethod(str, enum.Enum):
    PAYSTACK = "paystack"
    MPESA = "mpesa"
    MPESA_STK = "mpesa_stk"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


class PaymentTransaction(Base, PrimaryKeyMixin, TimestampMixin):
    """
    A single money movement recorded by the platform.

    Pending rows created at initiation carry a polling schedule
    (`status_check_attempts`, `next_status_check_at`) used by the
    background reconciliation job.
    """

    __tablename__ = "payment_transactions"

    business_id = Column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=True, index=True
    )
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    subscription_id = Column(
        String(36), ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True
    )

    amount = Column(Numeric(12, 2), nullable=False)
    business_amount = Column(Numeric(12, 2), nullable=True)
    platform_fee = Column(Numeric(12, 2), nullable=True, default=Decimal("0"))
    currency = Column(String(3), nullable=False, default="KES")

    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String(32), nullable=True)
    paystack_reference = Column(String(128), nullable=True, unique=True, index=True)
    transaction_type = Column(String(32), nullable=False, default=TransactionType.SUBSCRIPTION.value)

    # WHY: "metadata" is reserved on declarative classes
    meta = Column("metadata", JSONType, nullable=True)

    status_check_attempts = Column(Integer, nullable=False, default=0)
    next_status_check_at = Column(DateTime, nullable=True, index=True)

    def __repr__(self) -> str:
        return (
            f"<PaymentTransaction(id={self.id}, reference={self.paystack_reference}, "
            f"status={self.status}, type={self.transaction_type})>"
        )

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED.value


class ClientBusinessTransaction(Base, PrimaryKeyMixin, TimestampMixin):
    """A client-to-business payment routed through the platform (5% fee)."""

    __tablename__ = "client_business_transactions"

    business_id = Column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    client_email = Column(String(255), nullable=False)
    client_phone = Column(String(32), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    business_amount = Column(Numeric(12, 2), nullable=False)

    payment_reference = Column(String(128), nullable=False, unique=True, index=True)
    paystack_reference = Column(String(128), nullable=True)
    payment_method = Column(String(32), nullable=True)
    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value)
