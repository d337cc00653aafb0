"""
Charge application.

WHAT: Applies a successful Paystack charge to the database: subscription
activation, client-to-business payment or platform balance clearance.

WHY: A charge can be confirmed three ways (the `charge.success` webhook,
an M-Pesa status check and the reconciliation job). All of them go through
this one path so that a reference is applied exactly once no matter which
confirmation arrives first.

HOW:
1. apply_charge() dispatches on metadata.payment_type and stages the
   changes in the caller's session; a completed PaymentTransaction with the
   same reference short-circuits as a duplicate
2. process() commits, then publish() refreshes dashboards (cache
   invalidation + dashboard_refresh system event) and broadcasts
   `new_payment` to the business
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.exceptions import BusinessNotFoundError, InputError, InvalidPayloadError
from boinvit.dao.booking import BookingDAO
from boinvit.dao.business import BusinessDAO
from boinvit.dao.payment import ClientBusinessTransactionDAO, PaymentTransactionDAO
from boinvit.dao.subscription import SubscriptionDAO
from boinvit.models.booking import BookingPaymentStatus, BookingStatus
from boinvit.models.business import Business
from boinvit.models.payment import (
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    TransactionType,
)
from boinvit.models.subscription import PAID_PLANS, SubscriptionStatus
from boinvit.schemas.paystack import ChargeData
from boinvit.services.dashboard_service import force_dashboard_update
from boinvit.services.notification_service import NotificationService, get_notification_service
from boinvit.services.query_cache import QueryCache, get_query_cache
from boinvit.services.security_events import SecurityEventService, SecurityEventType
from boinvit.services.subscription_service import period_end_for, plan_limits

logger = logging.getLogger(__name__)


CLIENT_PAYMENT_FEE_RATE = Decimal("0.05")
CENTS = Decimal("0.01")

# Paystack transaction/charge statuses that end a payment
PROVIDER_SUCCESS_STATUSES = ("success",)
PROVIDER_FAILED_STATUSES = ("failed", "cancelled", "abandoned")


def map_provider_status(raw_status: Optional[str]) -> str:
    """success -> completed, failed/cancelled/abandoned -> failed, else pending."""
    if raw_status in PROVIDER_SUCCESS_STATUSES:
        return PaymentStatus.COMPLETED.value
    if raw_status in PROVIDER_FAILED_STATUSES:
        return PaymentStatus.FAILED.value
    return PaymentStatus.PENDING.value


def from_minor_units(amount: Any) -> Decimal:
    """Paystack amounts are in kobo/cents: 102000 -> 1020.00"""
    return (Decimal(str(amount)) / 100).quantize(CENTS, rounding=ROUND_HALF_UP)


def split_fee(amount: Decimal, rate: Decimal = CLIENT_PAYMENT_FEE_RATE) -> tuple:
    """Returns (platform_fee, business_amount)."""
    fee = (Decimal(amount) * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return fee, Decimal(amount) - fee


def resolve_payment_type(charge: ChargeData) -> str:
    """
    Which handler a charge belongs to.

    Charges without a payment_type are subscriptions, except that a
    booking_id without a plan marks a client payment.
    """
    metadata = charge.metadata
    if metadata.payment_type:
        return metadata.payment_type
    if metadata.booking_id and not metadata.plan_type:
        return TransactionType.CLIENT_TO_BUSINESS.value
    return TransactionType.SUBSCRIPTION.value


@dataclass
class ChargeOutcome:
    """Result of applying one charge."""

    reference: str
    payment_type: str
    business_id: Optional[str] = None
    amount: Decimal = Decimal("0")
    currency: str = "KES"
    applied: bool = False
    duplicate: bool = False
    booking_id: Optional[str] = None
    transaction_id: Optional[str] = None
    client_name: Optional[str] = None


class ChargeProcessor:
    """
    Applies confirmed charges inside one database session.

    Example:
        processor = ChargeProcessor(db)
        outcome = await processor.process(event.charge(), ip_address=ip)
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: Optional[QueryCache] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.session = session
        self._cache = cache
        self._notifier = notifier
        self.businesses = BusinessDAO(session)
        self.subscriptions = SubscriptionDAO(session)
        self.transactions = PaymentTransactionDAO(session)
        self.client_transactions = ClientBusinessTransactionDAO(session)
        self.bookings = BookingDAO(session)
        self.security_events = SecurityEventService(session)

    @property
    def cache(self) -> QueryCache:
        if self._cache is None:
            self._cache = get_query_cache()
        return self._cache

    @property
    def notifier(self) -> NotificationService:
        if self._notifier is None:
            self._notifier = get_notification_service()
        return self._notifier

    # ------------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------------

    async def process(
        self,
        charge: ChargeData,
        ip_address: Optional[str] = None,
        event_name: str = "charge.success",
    ) -> ChargeOutcome:
        """Apply, commit and publish a charge."""
        outcome = await self.apply_charge(charge, ip_address=ip_address, event_name=event_name)
        if outcome.applied:
            await self.session.commit()
            await self.publish(outcome)
        return outcome

    async def apply_charge(
        self,
        charge: ChargeData,
        ip_address: Optional[str] = None,
        event_name: str = "charge.success",
    ) -> ChargeOutcome:
        """
        Stage the database changes for a successful charge.

        Raises:
            InvalidPayloadError: Required metadata is missing
            InputError: Plan is not a paid plan
            BusinessNotFoundError: Business is missing or inactive
        """
        payment_type = resolve_payment_type(charge)

        if payment_type == TransactionType.PLATFORM_CLEARANCE.value:
            return await self._apply_platform_clearance(charge, ip_address, event_name)
        if payment_type in (
            TransactionType.CLIENT_TO_BUSINESS.value,
            TransactionType.BOOKING_PAYMENT.value,
        ):
            return await self._apply_client_payment(charge, ip_address, event_name)
        return await self._apply_subscription(charge, ip_address, event_name)

    async def publish(self, outcome: ChargeOutcome) -> None:
        """
        Refresh dashboards and notify the business after a committed charge.

        The payment is already committed, so failures here are logged only.
        """
        if not outcome.business_id:
            return

        try:
            await force_dashboard_update(
                self.session,
                self.cache,
                outcome.business_id,
                amount=outcome.amount,
                reference=outcome.reference,
                booking_id=outcome.booking_id,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.warning(f"Dashboard refresh failed for {outcome.reference}: {e}")

        await self.notifier.notify_business_of_payment(
            outcome.business_id,
            outcome.amount,
            outcome.reference,
            client_name=outcome.client_name,
        )

    async def apply_provider_status(
        self,
        data: Dict[str, Any],
        event_name: str = "status_check",
    ) -> Tuple[str, Optional[ChargeOutcome]]:
        """
        Apply a Paystack verify/charge lookup result.

        Metadata missing from the lookup is filled in from the pending row
        recorded when the payment was initiated.

        Returns:
            (normalized status, outcome when the charge was applied)
        """
        reference = data.get("reference")
        status = map_provider_status(data.get("status"))

        if status == PaymentStatus.COMPLETED.value:
            charge = await self._charge_from_provider(data)
            outcome = await self.process(charge, event_name=event_name)
            return status, outcome

        if status == PaymentStatus.FAILED.value and reference:
            await self.mark_failed(reference)
            await self.session.commit()
            logger.info(f"Payment {reference} marked failed ({data.get('status')})")

        return status, None

    async def mark_failed(self, reference: str) -> Optional[PaymentTransaction]:
        """Mark a still-pending reference failed. Completed rows are left alone."""
        transaction = await self.transactions.get_by_reference(reference)
        if transaction is not None and transaction.status == PaymentStatus.PENDING.value:
            transaction.status = PaymentStatus.FAILED.value

        client_transaction = await self.client_transactions.get_by_reference(reference)
        if client_transaction is not None and client_transaction.status == PaymentStatus.PENDING.value:
            client_transaction.status = PaymentStatus.FAILED.value

        await self.session.flush()
        return transaction

    # ------------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------------

    async def _apply_subscription(
        self, charge: ChargeData, ip_address: Optional[str], event_name: str
    ) -> ChargeOutcome:
        metadata = charge.metadata
        if not metadata.business_id or not metadata.plan_type:
            raise InvalidPayloadError(message="Invalid payment metadata", reference=charge.reference)

        business = await self._require_business(metadata.business_id, charge, ip_address)

        if metadata.plan_type not in PAID_PLANS:
            raise InputError(message="Invalid plan type", plan_type=metadata.plan_type)

        outcome = self._outcome(charge, TransactionType.SUBSCRIPTION.value, business.id)
        if await self._is_duplicate(charge.reference, outcome):
            return outcome

        interval = metadata.billing_interval or "monthly"
        subscription = await self.subscriptions.upsert_for_business(
            business.id,
            user_id=business.user_id,
            plan_type=metadata.plan_type,
            status=SubscriptionStatus.ACTIVE.value,
            current_period_end=period_end_for(interval),
            payment_interval=interval,
            **plan_limits(metadata.plan_type),
        )

        transaction = await self._record_transaction(
            charge,
            business_id=business.id,
            subscription_id=subscription.id,
            transaction_type=TransactionType.SUBSCRIPTION.value,
            extra_meta={
                "plan_type": metadata.plan_type,
                "billing_interval": interval,
                "webhook_event": event_name,
                "ip_address": ip_address,
            },
        )

        logger.info(
            f"Subscription activated for business {business.id}: "
            f"{metadata.plan_type}/{interval} ({charge.reference})"
        )
        return self._applied(outcome, transaction)

    async def _apply_client_payment(
        self, charge: ChargeData, ip_address: Optional[str], event_name: str
    ) -> ChargeOutcome:
        metadata = charge.metadata
        client_transaction = await self.client_transactions.get_by_reference(charge.reference)

        business_id = metadata.business_id or (client_transaction.business_id if client_transaction else None)
        if not business_id:
            raise InvalidPayloadError(message="Invalid payment metadata", reference=charge.reference)

        business = await self._require_business(business_id, charge, ip_address)
        outcome = self._outcome(charge, TransactionType.CLIENT_TO_BUSINESS.value, business.id)

        if client_transaction is not None and client_transaction.status == PaymentStatus.COMPLETED.value:
            outcome.duplicate = True
            return outcome
        if await self._is_duplicate(charge.reference, outcome):
            return outcome

        if client_transaction is not None:
            platform_fee = Decimal(client_transaction.platform_fee)
            business_amount = Decimal(client_transaction.business_amount)
        else:
            platform_fee, business_amount = split_fee(outcome.amount)

        booking_id = metadata.booking_id or (client_transaction.booking_id if client_transaction else None)
        client_name = metadata.client_email or metadata.customer_email

        if client_transaction is not None:
            client_transaction.status = PaymentStatus.COMPLETED.value
            client_transaction.paystack_reference = charge.reference
            client_name = client_name or client_transaction.client_email

        if booking_id:
            booking = await self.bookings.get_for_business(booking_id, business.id)
            if booking is None:
                logger.warning(f"Booking {booking_id} for payment {charge.reference} not found")
                booking_id = None
            else:
                booking.payment_status = BookingPaymentStatus.PAID.value
                booking.payment_method = PaymentMethod.PAYSTACK.value
                booking.payment_id = charge.reference
                if booking.status == BookingStatus.PENDING_PAYMENT.value:
                    booking.status = BookingStatus.CONFIRMED.value
                client_name = booking.customer_name or client_name

        transaction = await self._record_transaction(
            charge,
            business_id=business.id,
            booking_id=booking_id,
            platform_fee=platform_fee,
            business_amount=business_amount,
            transaction_type=TransactionType.CLIENT_TO_BUSINESS.value,
            extra_meta={
                "booking_id": booking_id,
                "client_email": metadata.client_email,
                "webhook_event": event_name,
                "ip_address": ip_address,
            },
        )

        outcome.booking_id = booking_id
        outcome.client_name = client_name
        logger.info(
            f"Client payment {charge.reference} completed for business {business.id}: "
            f"{outcome.amount} ({platform_fee} fee)"
        )
        return self._applied(outcome, transaction)

    async def _apply_platform_clearance(
        self, charge: ChargeData, ip_address: Optional[str], event_name: str
    ) -> ChargeOutcome:
        metadata = charge.metadata
        if not metadata.business_id:
            raise InvalidPayloadError(message="Invalid payment metadata", reference=charge.reference)

        business = await self._require_business(metadata.business_id, charge, ip_address)
        outcome = self._outcome(charge, TransactionType.PLATFORM_CLEARANCE.value, business.id)
        if await self._is_duplicate(charge.reference, outcome):
            return outcome

        business.platform_balance = Decimal("0")
        subscription = await self.subscriptions.get_by_business_id(business.id)
        if subscription is not None:
            subscription.subscription_balance_due = Decimal("0")

        transaction = await self._record_transaction(
            charge,
            business_id=business.id,
            subscription_id=subscription.id if subscription else None,
            transaction_type=TransactionType.PLATFORM_CLEARANCE.value,
            extra_meta={"webhook_event": event_name, "ip_address": ip_address},
        )

        logger.info(f"Platform balance cleared for business {business.id} ({charge.reference})")
        return self._applied(outcome, transaction)

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    async def _require_business(
        self, business_id: str, charge: ChargeData, ip_address: Optional[str]
    ) -> Business:
        """
        Load an active business or reject the payment.

        The security event is committed before raising so it survives the
        caller's rollback.
        """
        business = await self.businesses.get_active(business_id)
        if business is not None:
            return business

        await self.security_events.log_event(
            SecurityEventType.INVALID_BUSINESS_PAYMENT,
            f"Payment attempted for invalid business: {business_id}",
            metadata={
                "business_id": business_id,
                "reference": charge.reference,
                "amount": charge.amount,
            },
            severity="high",
            ip_address=ip_address,
        )
        await self.session.commit()
        raise BusinessNotFoundError(business_id=business_id)

    async def _charge_from_provider(self, data: Dict[str, Any]) -> ChargeData:
        raw_metadata = data.get("metadata")
        metadata = dict(raw_metadata) if isinstance(raw_metadata, dict) else {}

        pending = await self.transactions.get_by_reference(data.get("reference"))
        if pending is not None and pending.meta:
            metadata = {**pending.meta, **metadata}

        return ChargeData.model_validate({**data, "metadata": metadata})

    def _outcome(self, charge: ChargeData, payment_type: str, business_id: str) -> ChargeOutcome:
        return ChargeOutcome(
            reference=charge.reference,
            payment_type=payment_type,
            business_id=business_id,
            amount=from_minor_units(charge.amount),
            currency=(charge.currency or "NGN").upper(),
        )

    async def _is_duplicate(self, reference: str, outcome: ChargeOutcome) -> bool:
        existing = await self.transactions.get_completed_by_reference(reference)
        if existing is None:
            return False

        logger.info(f"Charge {reference} already processed, skipping")
        outcome.duplicate = True
        outcome.transaction_id = existing.id
        return True

    async def _record_transaction(
        self,
        charge: ChargeData,
        transaction_type: str,
        extra_meta: Dict[str, Any],
        **fields: Any,
    ) -> PaymentTransaction:
        """
        Write the completed ledger row for a charge.

        A pending row created when the payment was initiated is completed in
        place and keeps its payment method (e.g. mpesa_stk).
        """
        meta = {k: v for k, v in extra_meta.items() if v is not None}
        meta["processed_at"] = datetime.utcnow().isoformat()
        if charge.channel:
            meta["channel"] = charge.channel

        values = dict(
            amount=from_minor_units(charge.amount),
            currency=(charge.currency or "NGN").upper(),
            status=PaymentStatus.COMPLETED.value,
            transaction_type=transaction_type,
            next_status_check_at=None,
            **fields,
        )

        pending = await self.transactions.get_by_reference(charge.reference)
        if pending is not None:
            values["meta"] = {**(pending.meta or {}), **meta}
            values["payment_method"] = pending.payment_method or PaymentMethod.PAYSTACK.value
            for field, value in values.items():
                setattr(pending, field, value)
            await self.session.flush()
            return pending

        return await self.transactions.create(
            paystack_reference=charge.reference,
            payment_method=PaymentMethod.PAYSTACK.value,
            meta=meta,
            **values,
        )

    @staticmethod
    def _applied(outcome: ChargeOutcome, transaction: PaymentTransaction) -> ChargeOutcome:
        outcome.applied = True
        outcome.transaction_id = transaction.id
        return outcome
