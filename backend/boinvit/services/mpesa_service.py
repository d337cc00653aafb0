"""
M-Pesa payments through Paystack mobile money.

WHAT: Sends the STK push prompt to a customer's phone and checks on it
afterwards.

WHY: M-Pesa confirmation is asynchronous. The customer approves the prompt
on their phone seconds or minutes later, so initiation only records a
pending transaction. Completion arrives through the webhook, a status check
from the client, or the reconciliation job, whichever comes first.
"""

import logging
import re
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.exceptions import BusinessNotFoundError, InputError, PaystackError
from boinvit.dao.business import BusinessDAO
from boinvit.dao.payment import PaymentTransactionDAO
from boinvit.models.payment import PaymentMethod, PaymentStatus, TransactionType
from boinvit.services.charge_processor import ChargeProcessor, from_minor_units
from boinvit.services.paystack_client import PaystackClient
from boinvit.services.references import mpesa_reference
from boinvit.services.subscription_service import to_minor_units

logger = logging.getLogger(__name__)


KENYA_PREFIX = "254"

# Charge statuses meaning the prompt reached the phone
STK_ACCEPTED_STATUSES = ("send_otp", "pay_offline", "pending", "ongoing")

FIRST_STATUS_CHECK_DELAY = timedelta(seconds=30)


def format_mpesa_phone(raw: str) -> str:
    """
    Normalize a Kenyan phone number to 2547XXXXXXXX.

    >>> format_mpesa_phone("0712 345 678")
    '254712345678'
    """
    digits = re.sub(r"\D", "", raw or "")
    if not digits:
        raise InputError(message="Phone number is required")

    if digits.startswith("0"):
        digits = KENYA_PREFIX + digits[1:]
    if not digits.startswith(KENYA_PREFIX):
        digits = KENYA_PREFIX + digits
    return digits


class MpesaService:
    """STK push initiation and status checks."""

    def __init__(
        self,
        session: AsyncSession,
        paystack: PaystackClient,
        processor: Optional[ChargeProcessor] = None,
    ):
        self.session = session
        self.paystack = paystack
        self.processor = processor or ChargeProcessor(session)
        self.transactions = PaymentTransactionDAO(session)

    async def initiate_stk_push(
        self,
        phone: str,
        amount: Decimal,
        business_id: str,
        plan_type: str,
        email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an STK push for a subscription payment.

        Args:
            phone: Customer phone in any common Kenyan format
            amount: Amount in KES
            business_id: Business paying for the plan
            plan_type: Plan being bought
            email: Payer email (defaults to {phone}@mpesa.local)

        Returns:
            {"success", "message", "reference", "checkout_request_id", "status"}

        Raises:
            InputError: Bad phone number or amount
            BusinessNotFoundError: Business missing or inactive
            PaystackError: Paystack rejected the charge
        """
        formatted_phone = format_mpesa_phone(phone)
        amount = Decimal(str(amount))
        if amount <= 0:
            raise InputError(message="Amount must be greater than zero")

        if await BusinessDAO(self.session).get_active(business_id) is None:
            raise BusinessNotFoundError(business_id=business_id)

        reference = mpesa_reference()
        metadata = {
            "business_id": business_id,
            "plan_type": plan_type,
            "payment_method": PaymentMethod.MPESA_STK.value,
        }

        data = await self.paystack.create_charge(
            email=email or f"{formatted_phone}@mpesa.local",
            amount_minor=to_minor_units(amount),
            reference=reference,
            mobile_money={"phone": formatted_phone, "provider": "mpesa"},
            currency="KES",
            metadata=metadata,
        )

        charge_status = data.get("status")
        if charge_status not in STK_ACCEPTED_STATUSES:
            logger.warning(f"M-Pesa charge {reference} not accepted: {charge_status}")
            raise PaystackError(
                message=data.get("display_text") or data.get("message") or "Failed to initiate M-Pesa payment",
                charge_status=charge_status,
            )

        reference = data.get("reference") or reference
        await self.transactions.create(
            business_id=business_id,
            amount=amount,
            currency="KES",
            status=PaymentStatus.PENDING.value,
            payment_method=PaymentMethod.MPESA_STK.value,
            paystack_reference=reference,
            transaction_type=TransactionType.SUBSCRIPTION.value,
            meta={**metadata, "phone": formatted_phone},
            next_status_check_at=datetime.utcnow() + FIRST_STATUS_CHECK_DELAY,
        )

        logger.info(f"STK push sent for business {business_id}: {reference}")
        return {
            "success": True,
            "message": "STK push sent successfully",
            "reference": reference,
            "checkout_request_id": reference,
            "status": charge_status,
        }

    async def check_status(self, reference: str) -> Dict[str, Any]:
        """
        Ask Paystack about a pending M-Pesa charge and apply the answer.

        Returns:
            {"success", "status", "reference", "amount", "raw_status"} where
            status is completed, failed or pending and amount is in KES
        """
        data = await self.paystack.get_charge(reference)
        data.setdefault("reference", reference)
        status, _ = await self.processor.apply_provider_status(data, event_name="mpesa_status_check")

        return {
            "success": True,
            "status": status,
            "reference": data.get("reference") or reference,
            "amount": float(from_minor_units(data.get("amount") or 0)),
            "raw_status": data.get("status"),
        }
