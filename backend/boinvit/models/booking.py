"""
Booking model.

WHY: A booking starts as `pending_payment` and may only become `confirmed`
once money has been received, either through the Paystack webhook, an
M-Pesa status check or a manually recorded payment.
"""

import enum
from decimal import Decimal

from sqlalchemy import Column, Date, ForeignKey, Numeric, String, Time

from boinvit.models.base import Base, PrimaryKeyMixin, TimestampMixin


class BookingStatus(str, enum.Enum):
    """Booking lifecycle states."""

    PENDING_PAYMENT = "pending_payment"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingPaymentStatus(str, enum.Enum):
    """Payment state of a booking."""

    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Statuses that count as a real (kept) booking on the dashboard
ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value)

# Payment statuses that count as revenue
PAID_STATUSES = (BookingPaymentStatus.COMPLETED.value, BookingPaymentStatus.PAID.value)


class Booking(Base, PrimaryKeyMixin, TimestampMixin):
    """A client's booking of a service at a date and time."""

    __tablename__ = "bookings"

    business_id = Column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id = Column(String(36), ForeignKey("services.id", ondelete="SET NULL"), nullable=True)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)

    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=True)

    booking_date = Column(Date, nullable=False, index=True)
    booking_time = Column(Time, nullable=True)

    total_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False, default="KES")

    status = Column(String(32), nullable=False, default=BookingStatus.PENDING_PAYMENT.value, index=True)
    payment_status = Column(String(32), nullable=False, default=BookingPaymentStatus.PENDING.value)
    payment_method = Column(String(32), nullable=True)
    payment_id = Column(String(128), nullable=True)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, payment_status={self.payment_status})>"
