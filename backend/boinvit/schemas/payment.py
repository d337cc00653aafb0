"""
Payment schemas for API request/response validation.

WHAT: M-Pesa STK push, client-to-business payment initiation, and status
check responses.

WHY: Amount bounds live here so FastAPI rejects out-of-range requests
before any Paystack call is made.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from boinvit.models.subscription import PlanType


# Paystack M-Pesa limits for a single client payment (KES)
MIN_CLIENT_PAYMENT = Decimal("10")
MAX_CLIENT_PAYMENT = Decimal("65000")


class StkPushRequest(BaseModel):
    """Subscription payment through an M-Pesa STK push."""

    phone_number: str = Field(min_length=9, max_length=20)
    amount: Decimal = Field(gt=0)
    business_id: str
    plan_type: PlanType
    customer_email: Optional[EmailStr] = None


class StkPushResponse(BaseModel):
    success: bool
    message: str
    reference: str
    checkout_request_id: str
    status: Optional[str] = None


class ClientPaymentRequest(BaseModel):
    """
    A client paying a business through the platform.

    `payment_method` "mpesa" with a phone sends an STK push; anything else
    returns a hosted checkout URL.
    """

    business_id: str
    client_email: EmailStr
    client_phone: Optional[str] = Field(default=None, max_length=20)
    amount: Decimal
    payment_method: str = "paystack"
    booking_id: Optional[str] = None


class ClientPaymentResponse(BaseModel):
    success: bool = True
    reference: str
    amount: float
    platform_fee: float
    business_amount: float
    payment_method: str
    authorization_url: Optional[str] = None
    access_code: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    """Normalized status of a payment reference."""

    success: bool = True
    status: str = Field(description="completed, failed or pending")
    reference: str
    amount: float = Field(description="Amount in major units (KES)")
    raw_status: Optional[str] = Field(default=None, description="Status as reported by Paystack")
    attempts: Optional[int] = Field(default=None, description="Checks made when waiting")
    timed_out: Optional[bool] = Field(default=None, description="Still pending after the last check")
