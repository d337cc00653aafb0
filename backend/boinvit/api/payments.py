"""
Payment API endpoints.

WHAT:
1. POST /payments/mpesa/stk-push - Subscription payment by M-Pesa prompt
2. GET /payments/mpesa/{reference}/status - Check an M-Pesa charge, optionally waiting
3. POST /payments/client-to-business - Client pays a business
4. GET /payments/{reference}/status - Verify any Paystack transaction

WHY: The status endpoints let the frontend poll for confirmation; each
check that finds a successful charge applies it through the same
idempotent path as the webhook, so whichever arrives first wins.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.auth import AuthenticatedUser
from boinvit.core.config import settings
from boinvit.core.deps import get_current_user
from boinvit.core.exceptions import BusinessAccessDenied
from boinvit.dao.business import BusinessDAO
from boinvit.db.session import get_db
from boinvit.schemas.payment import (
    ClientPaymentRequest,
    ClientPaymentResponse,
    PaymentStatusResponse,
    StkPushRequest,
    StkPushResponse,
)
from boinvit.services.booking_service import BookingService
from boinvit.services.charge_processor import ChargeProcessor, from_minor_units
from boinvit.services.mpesa_service import MpesaService
from boinvit.services.notification_service import NotificationService, get_notification_service
from boinvit.services.payment_polling import poll_payment_status
from boinvit.services.paystack_client import PaystackClient, get_paystack_client
from boinvit.services.query_cache import QueryCache, get_query_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _processor(
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
    notifier: NotificationService = Depends(get_notification_service),
) -> ChargeProcessor:
    return ChargeProcessor(db, cache=cache, notifier=notifier)


# ============================================================================
# M-Pesa
# ============================================================================


@router.post(
    "/mpesa/stk-push",
    response_model=StkPushResponse,
    summary="Send M-Pesa STK push",
    description="Prompts the payer's phone to approve a subscription payment.",
)
async def mpesa_stk_push(
    data: StkPushRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
    processor: ChargeProcessor = Depends(_processor),
) -> StkPushResponse:
    """
    Start an M-Pesa subscription payment for a business the caller owns.

    Raises:
        BusinessAccessDenied (404): Caller doesn't own the business
        PaystackError (502): Paystack rejected the charge
    """
    if await BusinessDAO(db).get_owned(data.business_id, current_user.id) is None:
        raise BusinessAccessDenied(business_id=data.business_id)

    service = MpesaService(db, paystack, processor=processor)
    result = await service.initiate_stk_push(
        phone=data.phone_number,
        amount=data.amount,
        business_id=data.business_id,
        plan_type=data.plan_type.value,
        email=data.customer_email,
    )
    await db.commit()
    return StkPushResponse(**result)


@router.get(
    "/mpesa/{reference}/status",
    response_model=PaymentStatusResponse,
    summary="Check M-Pesa payment status",
)
async def mpesa_status(
    reference: str,
    wait: bool = Query(False, description="Keep checking until the charge completes, fails or times out"),
    db: AsyncSession = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
    processor: ChargeProcessor = Depends(_processor),
) -> PaymentStatusResponse:
    """
    Look up a pending M-Pesa charge; a successful one is applied.

    With `wait=true` the check is repeated with backoff, so a client that
    just approved the prompt gets the final status in one request.
    """
    service = MpesaService(db, paystack, processor=processor)
    if not wait:
        return PaymentStatusResponse(**await service.check_status(reference))

    result = await poll_payment_status(
        lambda: service.check_status(reference),
        max_attempts=settings.PAYMENT_STATUS_WAIT_ATTEMPTS,
        initial_delay=settings.PAYMENT_STATUS_WAIT_DELAY_SECONDS,
        max_delay=settings.PAYMENT_STATUS_WAIT_DELAY_SECONDS * 4,
    )
    return PaymentStatusResponse(**result)


# ============================================================================
# Client payments
# ============================================================================


@router.post(
    "/client-to-business",
    response_model=ClientPaymentResponse,
    summary="Pay a business",
    description="Client payment through Paystack with a 5% platform fee.",
)
async def client_to_business_payment(
    data: ClientPaymentRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
) -> ClientPaymentResponse:
    """
    Start a client-to-business payment from a public booking page.

    Raises:
        InputError (400): Amount outside KES 10 - 65,000
        BusinessNotFoundError (404): Business missing or inactive
        PaystackError (502): Paystack rejected the request
    """
    result = await BookingService(db, paystack).initiate_client_payment(
        business_id=data.business_id,
        client_email=data.client_email,
        amount=data.amount,
        client_phone=data.client_phone,
        payment_method=data.payment_method,
        booking_id=data.booking_id,
        origin=request.headers.get("origin"),
    )
    await db.commit()
    return ClientPaymentResponse(**result)


# ============================================================================
# Generic status
# ============================================================================


@router.get(
    "/{reference}/status",
    response_model=PaymentStatusResponse,
    summary="Verify payment status",
)
async def payment_status(
    reference: str,
    paystack: PaystackClient = Depends(get_paystack_client),
    processor: ChargeProcessor = Depends(_processor),
) -> PaymentStatusResponse:
    """
    Verify a transaction with Paystack and apply the result.

    Returns:
        completed, failed or pending with the amount in KES
    """
    data = await paystack.verify_transaction(reference)
    data.setdefault("reference", reference)
    status, _ = await processor.apply_provider_status(data, event_name="status_check")

    return PaymentStatusResponse(
        status=status,
        reference=data["reference"],
        amount=float(from_minor_units(data.get("amount") or 0)),
        raw_status=data.get("status"),
    )
