"""
Booking schemas for API request/response validation.

WHAT: Request bodies for creating bookings, changing their status and
taking payment; the booking response model.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from boinvit.models.booking import BookingStatus
from boinvit.models.payment import PaymentMethod


class BookingCreate(BaseModel):
    """
    A new booking.

    `total_amount` defaults to the service price when a service is given.
    """

    service_id: Optional[str] = None
    client_id: Optional[str] = None
    customer_name: str = Field(min_length=1, max_length=255)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = Field(default=None, max_length=32)
    booking_date: date
    booking_time: Optional[time] = None
    total_amount: Optional[Decimal] = Field(default=None, ge=0)


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingPaymentRequest(BaseModel):
    """Payment taken for a booking outside the Paystack checkout."""

    payment_method: PaymentMethod
    payment_reference: Optional[str] = Field(default=None, max_length=128)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_id: str
    service_id: Optional[str] = None
    client_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    booking_date: date
    booking_time: Optional[time] = None
    total_amount: float
    currency: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: Optional[datetime] = None
