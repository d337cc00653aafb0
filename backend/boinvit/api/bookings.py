"""
Booking API endpoints.

WHAT: Create bookings, read them, change their status and record payment
for a business the caller owns.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.deps import get_owned_business
from boinvit.db.session import get_db
from boinvit.models.business import Business
from boinvit.schemas.booking import (
    BookingCreate,
    BookingPaymentRequest,
    BookingResponse,
    BookingStatusUpdate,
)
from boinvit.services.booking_service import BookingService
from boinvit.services.dashboard_service import force_dashboard_update
from boinvit.services.query_cache import QueryCache, get_query_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses/{business_id}/bookings", tags=["Bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreate,
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
) -> BookingResponse:
    """
    Create a booking in `pending_payment`.

    Raises:
        SubscriptionLimitError (422): Monthly booking limit reached
        ResourceNotFoundError (404): Service not found
    """
    booking = await BookingService(db).create_booking(business, data)
    await db.commit()
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
) -> BookingResponse:
    booking = await BookingService(db).get_booking(business.id, booking_id)
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: str,
    data: BookingStatusUpdate,
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
) -> BookingResponse:
    """
    Change a booking's status.

    Raises:
        InvalidStateTransitionError (400): Confirming a booking that isn't
            awaiting payment
    """
    booking = await BookingService(db).update_booking_status(business.id, booking_id, data.status.value)
    await db.commit()
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/payment", response_model=BookingResponse)
async def record_booking_payment(
    booking_id: str,
    data: BookingPaymentRequest,
    business: Business = Depends(get_owned_business),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
) -> BookingResponse:
    """Record a payment taken by the business and confirm the booking."""
    service = BookingService(db)
    booking = await service.get_booking(business.id, booking_id)
    booking = await service.process_booking_payment(
        booking, data.payment_method.value, data.payment_reference
    )
    await db.commit()

    await force_dashboard_update(
        db,
        cache,
        business.id,
        amount=booking.total_amount,
        reference=booking.payment_id,
        booking_id=booking.id,
    )
    await db.commit()
    return BookingResponse.model_validate(booking)
