"""
Paystack webhook endpoint.

WHAT: POST /api/webhooks/paystack, the `charge.success` receiver.

WHY: Webhooks are the primary source of truth for payments. The endpoint
is unauthenticated; trust comes from the HMAC-SHA512 signature over the
raw body, so the body is read as bytes and never re-serialized before
verification.

SECURITY:
- Rate limited per client IP by RateLimitMiddleware (30/min)
- Signature verified before the body is parsed
- Replayed signatures rejected for 5 minutes
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.db.session import get_db
from boinvit.middleware.request_context import get_client_ip
from boinvit.schemas.paystack import WebhookAck
from boinvit.services.charge_processor import ChargeProcessor
from boinvit.services.notification_service import NotificationService, get_notification_service
from boinvit.services.paystack_webhook_service import PaystackWebhookService
from boinvit.services.query_cache import QueryCache, get_query_cache
from boinvit.services.webhook_security import ReplayGuard, get_replay_guard

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/paystack",
    response_model=WebhookAck,
    summary="Paystack webhook",
    description="Receives Paystack events. Only `charge.success` changes state.",
)
async def paystack_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    replay_guard: ReplayGuard = Depends(get_replay_guard),
    cache: QueryCache = Depends(get_query_cache),
    notifier: NotificationService = Depends(get_notification_service),
    x_paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
) -> WebhookAck:
    """
    Verify and apply a Paystack webhook delivery.

    Returns:
        {"received": true, "status": "success", "timestamp": ...}

    Raises:
        WebhookSignatureError (401), ReplayAttackError (400),
        InvalidPayloadError (400), BusinessNotFoundError (404),
        WebhookConfigurationError / WebhookProcessingError (500)
    """
    body = await request.body()

    service = PaystackWebhookService(
        db,
        replay_guard,
        processor=ChargeProcessor(db, cache=cache, notifier=notifier),
    )
    return await service.handle_delivery(body, x_paystack_signature, get_client_ip(request))
