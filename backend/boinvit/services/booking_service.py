"""
Booking service.

WHAT: Booking creation, status changes and the payment side of bookings:
payments recorded by the business (cash, bank transfer, M-Pesa till) and
client payments initiated through Paystack.

WHY: A booking is only confirmed once it is paid. `confirmed` can only be
reached from `pending_payment`, so an unpaid slot can't be confirmed by a
status update.

HOW:
- Platform commission depends on the business's plan (commission_rate)
- Client payments through Paystack carry a flat 5% platform fee and are
  completed by ChargeProcessor when the charge succeeds
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.config import settings
from boinvit.core.exceptions import (
    BookingNotFoundError,
    BusinessNotFoundError,
    InputError,
    InvalidStateTransitionError,
    PaystackError,
    ResourceNotFoundError,
    SubscriptionLimitError,
)
from boinvit.dao.booking import BookingDAO
from boinvit.dao.business import BusinessDAO
from boinvit.dao.payment import ClientBusinessTransactionDAO, PaymentTransactionDAO
from boinvit.dao.subscription import SubscriptionDAO
from boinvit.models.booking import Booking, BookingPaymentStatus, BookingStatus
from boinvit.models.business import Business, Service
from boinvit.models.payment import PaymentMethod, PaymentStatus, TransactionType
from boinvit.models.subscription import PlanType
from boinvit.schemas.booking import BookingCreate
from boinvit.schemas.payment import MAX_CLIENT_PAYMENT, MIN_CLIENT_PAYMENT
from boinvit.services.charge_processor import CENTS, CLIENT_PAYMENT_FEE_RATE, split_fee
from boinvit.services.mpesa_service import (
    FIRST_STATUS_CHECK_DELAY,
    STK_ACCEPTED_STATUSES,
    format_mpesa_phone,
)
from boinvit.services.paystack_client import PaystackClient
from boinvit.services.references import client_payment_reference
from boinvit.services.subscription_service import SubscriptionService, to_minor_units

logger = logging.getLogger(__name__)


# Platform commission per plan on payments a business records itself
COMMISSION_RATES = {
    None: Decimal("0.05"),
    PlanType.PAYG.value: Decimal("0.05"),
    PlanType.TRIAL.value: Decimal("0.03"),
    PlanType.STARTER.value: Decimal("0.03"),
}

# Methods where the money never passes through Paystack, so the fee is owed
OFFLINE_METHODS = (
    PaymentMethod.CASH.value,
    PaymentMethod.BANK_TRANSFER.value,
    PaymentMethod.MPESA.value,
)


def commission_rate(plan_type: Optional[str]) -> Decimal:
    """No subscription or payg 5%; trial and starter 3%; paid tiers above that 0."""
    return COMMISSION_RATES.get(plan_type, Decimal("0"))


class BookingService:
    """Bookings and booking payments for one business session."""

    def __init__(self, session: AsyncSession, paystack: Optional[PaystackClient] = None):
        self.session = session
        self._paystack = paystack
        self.bookings = BookingDAO(session)
        self.businesses = BusinessDAO(session)
        self.subscriptions = SubscriptionDAO(session)
        self.transactions = PaymentTransactionDAO(session)
        self.client_transactions = ClientBusinessTransactionDAO(session)

    @property
    def paystack(self) -> PaystackClient:
        if self._paystack is None:
            self._paystack = PaystackClient()
        return self._paystack

    # ------------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------------

    async def create_booking(self, business: Business, data: BookingCreate) -> Booking:
        """
        Create a booking awaiting payment.

        Raises:
            ResourceNotFoundError: Service doesn't belong to the business
            SubscriptionLimitError: Monthly booking limit reached
        """
        limits = await SubscriptionService(self.session, self._paystack).check_limits(business.id)
        if not limits.can_add_booking:
            raise SubscriptionLimitError(
                message="Monthly booking limit reached for your plan",
                bookings_limit=limits.bookings_limit,
            )

        total_amount = data.total_amount
        if data.service_id:
            service = await self.session.get(Service, data.service_id)
            if service is None or service.business_id != business.id:
                raise ResourceNotFoundError(message="Service not found", service_id=data.service_id)
            if total_amount is None:
                total_amount = service.price

        booking = await self.bookings.create(
            business_id=business.id,
            service_id=data.service_id,
            client_id=data.client_id,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            customer_phone=data.customer_phone,
            booking_date=data.booking_date,
            booking_time=data.booking_time,
            total_amount=total_amount or Decimal("0"),
            currency=business.currency or "KES",
            status=BookingStatus.PENDING_PAYMENT.value,
            payment_status=BookingPaymentStatus.PENDING.value,
        )
        logger.info(f"Booking {booking.id} created for business {business.id}")
        return booking

    async def get_booking(self, business_id: str, booking_id: str) -> Booking:
        booking = await self.bookings.get_for_business(booking_id, business_id)
        if booking is None:
            raise BookingNotFoundError(booking_id=booking_id)
        return booking

    async def update_booking_status(self, business_id: str, booking_id: str, status: str) -> Booking:
        """
        Change a booking's status.

        Raises:
            BookingNotFoundError: No such booking for this business
            InvalidStateTransitionError: Confirming a booking that isn't
                awaiting payment
        """
        booking = await self.get_booking(business_id, booking_id)
        status = BookingStatus(status).value

        if (
            status == BookingStatus.CONFIRMED.value
            and booking.status != BookingStatus.PENDING_PAYMENT.value
        ):
            raise InvalidStateTransitionError(
                message=f"Cannot confirm a booking with status '{booking.status}'",
                current_status=booking.status,
                requested_status=status,
            )

        booking.status = status
        await self.session.flush()
        return booking

    # ------------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------------

    async def process_booking_payment(
        self,
        booking: Booking,
        payment_method: str,
        payment_reference: Optional[str] = None,
    ) -> Booking:
        """
        Record a payment the business took for a booking and confirm it.

        Commission follows the business's plan. For offline methods the
        commission is added to the business's platform balance, since the
        platform never held the money.

        Raises:
            InvalidStateTransitionError: Booking is not awaiting payment
        """
        if booking.status != BookingStatus.PENDING_PAYMENT.value:
            raise InvalidStateTransitionError(
                message=f"Cannot take payment for a booking with status '{booking.status}'",
                current_status=booking.status,
            )

        subscription = await self.subscriptions.get_by_business_id(booking.business_id)
        rate = commission_rate(subscription.plan_type if subscription else None)
        amount = Decimal(booking.total_amount or 0)
        platform_fee, business_amount = split_fee(amount, rate)
        reference = payment_reference or f"booking-{booking.id}"

        await self.transactions.create(
            business_id=booking.business_id,
            booking_id=booking.id,
            amount=amount,
            business_amount=business_amount,
            platform_fee=platform_fee,
            currency=booking.currency or "KES",
            status=PaymentStatus.COMPLETED.value,
            payment_method=payment_method,
            paystack_reference=reference,
            transaction_type=TransactionType.CLIENT_TO_BUSINESS.value,
            meta={"commission_rate": float(rate), "source": "booking_payment"},
        )

        if payment_method in OFFLINE_METHODS and platform_fee > 0:
            business = await self.businesses.get_by_id(booking.business_id)
            business.platform_balance = Decimal(business.platform_balance or 0) + platform_fee

        booking.status = BookingStatus.CONFIRMED.value
        booking.payment_status = BookingPaymentStatus.PAID.value
        booking.payment_method = payment_method
        booking.payment_id = reference
        await self.session.flush()

        logger.info(
            f"Booking {booking.id} paid by {payment_method}: {amount} "
            f"(commission {platform_fee} at {rate})"
        )
        return booking

    async def initiate_client_payment(
        self,
        business_id: str,
        client_email: str,
        amount: Decimal,
        client_phone: Optional[str] = None,
        payment_method: str = PaymentMethod.PAYSTACK.value,
        booking_id: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a client-to-business payment through Paystack.

        Args:
            business_id: Business being paid
            client_email: Payer email (required by Paystack)
            amount: Amount in KES, 10 to 65,000
            client_phone: Phone for an M-Pesa prompt
            payment_method: "mpesa" sends an STK push when a phone is given
            booking_id: Booking being paid for, if any
            origin: Frontend origin for the checkout callback

        Returns:
            Reference, fee split and either the checkout URL or STK status

        Raises:
            InputError: Missing email or amount out of range
            BusinessNotFoundError: Business missing or inactive
            PaystackError: Paystack rejected the request
        """
        if not client_email:
            raise InputError(message="Client email is required")

        amount = Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)
        if amount < MIN_CLIENT_PAYMENT or amount > MAX_CLIENT_PAYMENT:
            raise InputError(
                message=f"Amount must be between KES {MIN_CLIENT_PAYMENT} and KES {MAX_CLIENT_PAYMENT}",
                amount=float(amount),
            )

        business = await self.businesses.get_active(business_id)
        if business is None:
            raise BusinessNotFoundError(business_id=business_id)

        platform_fee, business_amount = split_fee(amount, CLIENT_PAYMENT_FEE_RATE)
        reference = client_payment_reference()
        metadata = {
            "payment_type": TransactionType.CLIENT_TO_BUSINESS.value,
            "business_id": business.id,
            "business_name": business.name,
            "booking_id": booking_id,
            "client_email": client_email,
            "client_phone": client_phone,
            "platform_fee": float(platform_fee),
            "business_amount": float(business_amount),
        }
        metadata = {k: v for k, v in metadata.items() if v is not None}

        result: Dict[str, Any] = {
            "success": True,
            "amount": float(amount),
            "platform_fee": float(platform_fee),
            "business_amount": float(business_amount),
        }

        use_mpesa = payment_method == PaymentMethod.MPESA.value and bool(client_phone)
        if use_mpesa:
            data = await self.paystack.create_charge(
                email=client_email,
                amount_minor=to_minor_units(amount),
                reference=reference,
                mobile_money={"phone": format_mpesa_phone(client_phone), "provider": "mpesa"},
                currency="KES",
                metadata=metadata,
            )
            charge_status = data.get("status")
            if charge_status not in STK_ACCEPTED_STATUSES:
                logger.warning(f"Client M-Pesa charge {reference} not accepted: {charge_status}")
                raise PaystackError(
                    message=data.get("display_text") or data.get("message") or "Failed to initiate M-Pesa payment",
                    charge_status=charge_status,
                )
            result.update(
                payment_method=PaymentMethod.MPESA.value,
                status=charge_status,
                message=data.get("display_text") or "Check your phone to approve the payment",
            )
        else:
            callback_origin = (origin or settings.FRONTEND_URL).rstrip("/")
            data = await self.paystack.initialize_transaction(
                email=client_email,
                amount_minor=to_minor_units(amount),
                reference=reference,
                currency="KES",
                callback_url=f"{callback_origin}/payment-success",
                metadata=metadata,
            )
            result.update(
                payment_method=PaymentMethod.PAYSTACK.value,
                authorization_url=data.get("authorization_url"),
                access_code=data.get("access_code"),
            )

        reference = data.get("reference") or reference
        await self.client_transactions.create(
            business_id=business.id,
            booking_id=booking_id,
            client_email=client_email,
            client_phone=client_phone,
            amount=amount,
            platform_fee=platform_fee,
            business_amount=business_amount,
            payment_reference=reference,
            payment_method=result["payment_method"],
            status=PaymentStatus.PENDING.value,
        )
        # Ledger row the reconciliation job checks if the webhook never arrives
        await self.transactions.create(
            business_id=business.id,
            booking_id=booking_id,
            amount=amount,
            platform_fee=platform_fee,
            business_amount=business_amount,
            currency="KES",
            status=PaymentStatus.PENDING.value,
            payment_method=result["payment_method"],
            paystack_reference=reference,
            transaction_type=TransactionType.CLIENT_TO_BUSINESS.value,
            meta=metadata,
            next_status_check_at=datetime.utcnow() + FIRST_STATUS_CHECK_DELAY,
        )

        logger.info(f"Client payment {reference} initiated for business {business.id}: {amount}")
        result["reference"] = reference
        return result
