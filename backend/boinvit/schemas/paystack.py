"""
Paystack webhook schemas.

WHAT: Typed view of a `charge.success` delivery after it has passed
validation in `webhook_security.validate_webhook_event`.

WHY: The webhook body is attacker-controlled until proven otherwise; the
validator collects every problem as a message list, and only then is the
payload parsed into these models.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChargeMetadata(BaseModel):
    """
    Metadata attached to a charge at initialization time.

    `payment_type` selects the handler: subscription (default),
    client_to_business or platform_clearance.
    """

    model_config = ConfigDict(extra="allow")

    business_id: Optional[str] = None
    plan_type: Optional[str] = None
    billing_interval: Optional[str] = None
    payment_type: Optional[str] = None
    payment_method: Optional[str] = None
    booking_id: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    customer_email: Optional[str] = None


class ChargeCustomer(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    phone: Optional[str] = None


class ChargeData(BaseModel):
    """The `data` object of a Paystack charge event or verify response."""

    model_config = ConfigDict(extra="allow")

    reference: str
    amount: float = Field(description="Amount in the currency's minor unit (kobo/cents)")
    currency: Optional[str] = None
    status: Optional[str] = None
    channel: Optional[str] = None
    paid_at: Optional[str] = None
    metadata: ChargeMetadata = Field(default_factory=ChargeMetadata)
    customer: Optional[ChargeCustomer] = None


class PaystackEvent(BaseModel):
    """A verified and validated Paystack webhook event."""

    model_config = ConfigDict(extra="allow")

    event: str
    data: Dict[str, Any]

    def charge(self) -> ChargeData:
        return ChargeData.model_validate(self.data)


class WebhookAck(BaseModel):
    """Body returned to Paystack on success."""

    received: bool = True
    status: str = "success"
    timestamp: str
