"""
Paystack webhook processing.

WHAT: Everything between the raw request body and the acknowledgement:
signature check, replay rejection, payload validation, audit events and
dispatch to charge handling.

WHY: Paystack is the only caller and it retries anything that isn't 2xx.
The ordering matters: nothing is parsed before the signature is verified,
and a delivery that fails *after* verification releases its replay entry
so Paystack's retry is not mistaken for a replay.

HOW:
    handle_delivery(body, signature, ip)
      -> verify_paystack_signature      401 Missing/Invalid signature
      -> ReplayGuard.check_and_remember 400 Replay attack detected
      -> json + validate_webhook_event  400 Invalid JSON payload / Invalid input
      -> WEBHOOK_PROCESSED event (committed on its own)
      -> handle_charge_success          (other events: logged, acknowledged)
      -> WebhookAck
"""

import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.config import settings
from boinvit.core.exceptions import (
    AppException,
    InvalidPayloadError,
    ReplayAttackError,
    WebhookConfigurationError,
    WebhookProcessingError,
    WebhookSignatureError,
)
from boinvit.schemas.paystack import ChargeData, PaystackEvent, WebhookAck
from boinvit.services.charge_processor import ChargeOutcome, ChargeProcessor
from boinvit.services.security_events import SecurityEventService, SecurityEventType
from boinvit.services.webhook_security import (
    ReplayGuard,
    sanitize_payload,
    validate_webhook_event,
    verify_paystack_signature,
)

logger = logging.getLogger(__name__)


CHARGE_SUCCESS = "charge.success"


class PaystackWebhookService:
    """Verifies and applies one Paystack webhook delivery."""

    def __init__(
        self,
        session: AsyncSession,
        replay_guard: ReplayGuard,
        processor: Optional[ChargeProcessor] = None,
        secret: Optional[str] = None,
    ):
        self.session = session
        self.replay_guard = replay_guard
        self.processor = processor or ChargeProcessor(session)
        self.secret = secret if secret is not None else settings.PAYSTACK_WEBHOOK_SECRET
        self.security_events = SecurityEventService(session)

    async def handle_delivery(
        self,
        body: bytes,
        signature: Optional[str],
        ip_address: str,
    ) -> WebhookAck:
        """
        Process a raw webhook delivery.

        Raises:
            WebhookSignatureError: Missing or wrong signature (401)
            WebhookConfigurationError: No webhook secret configured (500)
            ReplayAttackError: Signature seen inside the replay window (400)
            InvalidPayloadError: Body is not JSON or fails validation (400)
            WebhookProcessingError: Anything unexpected after verification (500)
        """
        if not signature:
            logger.warning(f"Paystack webhook without signature from {ip_address}")
            raise WebhookSignatureError(message="Missing signature")

        if not self.secret:
            logger.error("PAYSTACK_WEBHOOK_SECRET is not configured")
            raise WebhookConfigurationError()

        if not verify_paystack_signature(body, signature, self.secret):
            logger.warning(f"Invalid Paystack webhook signature from {ip_address}")
            await self._audit(
                SecurityEventType.WEBHOOK_SIGNATURE_INVALID,
                "Paystack webhook rejected: invalid signature",
                {"ip_address": ip_address},
                severity="high",
            )
            raise WebhookSignatureError()

        if not await self.replay_guard.check_and_remember(signature):
            logger.warning(f"Replayed Paystack webhook from {ip_address}")
            await self._audit(
                SecurityEventType.WEBHOOK_REPLAY,
                "Paystack webhook rejected: replayed signature",
                {"ip_address": ip_address},
                severity="high",
            )
            raise ReplayAttackError()

        event = self._parse(body)

        # Committed before dispatch so it survives any rollback below
        await self._audit(
            SecurityEventType.WEBHOOK_PROCESSED,
            f"Paystack webhook processed: {event.event}",
            {
                "event_type": event.event,
                "reference": event.data.get("reference"),
                "ip_address": ip_address,
            },
        )

        try:
            if event.event == CHARGE_SUCCESS:
                charge = ChargeData.model_validate(sanitize_payload(event.data))
                await self.handle_charge_success(charge, ip_address)
            else:
                logger.info(f"Unhandled Paystack event type: {event.event}")

        except AppException:
            raise

        except Exception as e:
            logger.error(f"Error processing Paystack webhook {event.event}: {e}", exc_info=True)
            await self.session.rollback()
            await self._audit(
                SecurityEventType.WEBHOOK_ERROR,
                f"Paystack webhook processing failed: {event.event}",
                {"event_type": event.event, "error": str(e), "ip_address": ip_address},
                severity="high",
            )
            await self.replay_guard.forget(signature)
            raise WebhookProcessingError()

        return WebhookAck(timestamp=datetime.utcnow().isoformat())

    async def handle_charge_success(
        self, charge: ChargeData, ip_address: Optional[str] = None
    ) -> ChargeOutcome:
        """
        Apply a `charge.success` event.

        A duplicate (already completed reference) is acknowledged without
        changing anything.
        """
        outcome = await self.processor.process(charge, ip_address=ip_address, event_name=CHARGE_SUCCESS)
        if outcome.duplicate:
            logger.info(f"Duplicate Paystack charge acknowledged: {charge.reference}")
        return outcome

    def _parse(self, body: bytes) -> PaystackEvent:
        try:
            data = json.loads(body)
        except ValueError:
            raise InvalidPayloadError(message="Invalid JSON payload")

        event, errors = validate_webhook_event(data)
        if event is None:
            logger.warning(f"Paystack webhook failed validation: {errors}")
            raise InvalidPayloadError(errors=errors)
        return event

    async def _audit(self, event_type: str, description: str, metadata: dict, severity: str = "low") -> None:
        """Write a security event and commit it on its own."""
        await self.security_events.log_event(
            event_type,
            description,
            metadata=metadata,
            severity=severity,
            ip_address=metadata.get("ip_address"),
        )
        await self.session.commit()
