"""
Business (tenant) models.

WHAT: Business is the tenant; services, staff and clients all hang off it.

WHY: Every dashboard query, payment and subscription is scoped by
business_id. The owner is the Supabase auth user in `user_id`.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String

from boinvit.models.base import Base, PrimaryKeyMixin, TimestampMixin


class Business(Base, PrimaryKeyMixin, TimestampMixin):
    """
    A business that takes bookings on Boinvit.

    `platform_balance` accumulates fees owed to the platform by businesses
    collecting payments outside Paystack; a `platform_clearance` payment
    resets it to zero.
    """

    __tablename__ = "businesses"

    user_id = Column(String(36), nullable=False, index=True, doc="Supabase auth uid of the owner")
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    slug = Column(String(255), nullable=True, unique=True)
    currency = Column(String(3), nullable=False, default="KES")
    is_active = Column(Boolean, nullable=False, default=True)
    platform_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    paystack_subaccount_id = Column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<Business(id={self.id}, name={self.name}, active={self.is_active})>"


class Service(Base, PrimaryKeyMixin, TimestampMixin):
    """A bookable service offered by a business."""

    __tablename__ = "services"

    business_id = Column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    duration_minutes = Column(Integer, nullable=False, default=60)
    is_active = Column(Boolean, nullable=False, default=True)


class Staff(Base, PrimaryKeyMixin, TimestampMixin):
    """A staff member; active staff count against the plan's staff limit."""

    __tablename__ = "staff"

    business_id = Column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Client(Base, PrimaryKeyMixin, TimestampMixin):
    """A customer of a business."""

    __tablename__ = "clients"

    business_id = Column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
