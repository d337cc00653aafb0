"""
Unit tests for PaystackWebhookService.

WHY: The ordering of checks is the security property:
1. Nothing is parsed before the signature is verified
2. Rejections are audited and committed even though the request fails
3. A failure after verification releases the replay entry so Paystack's
   retry is processed instead of being rejected as a replay
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from boinvit.core.exceptions import (
    BusinessNotFoundError,
    InvalidPayloadError,
    ReplayAttackError,
    WebhookConfigurationError,
    WebhookProcessingError,
    WebhookSignatureError,
)
from boinvit.models.events import SecurityEvent
from boinvit.models.payment import PaymentTransaction
from boinvit.services.charge_processor import ChargeProcessor
from boinvit.services.paystack_webhook_service import PaystackWebhookService
from boinvit.services.webhook_security import compute_signature

from tests.factories import BusinessFactory

SECRET = "whsec_test_boinvit"
IP = "52.31.139.75"


def _signed(payload: dict) -> tuple:
    body = json.dumps(payload).encode()
    return body, compute_signature(body, SECRET)


def _charge_success(business_id: str, reference: str = "SUB_1712345678_ab12cd34") -> dict:
    return {
        "event": "charge.success",
        "data": {
            "reference": reference,
            "amount": 102000,
            "currency": "KES",
            "channel": "card",
            "metadata": {"business_id": business_id, "plan_type": "starter"},
        },
    }


async def _event_types(session) -> list:
    result = await session.execute(select(SecurityEvent.event_type).order_by(SecurityEvent.created_at))
    return list(result.scalars().all())


@pytest.fixture
def service(db_session, mock_replay_guard, mock_cache, mock_notifier):
    processor = ChargeProcessor(db_session, cache=mock_cache, notifier=mock_notifier)
    return PaystackWebhookService(db_session, mock_replay_guard, processor=processor, secret=SECRET)


class TestRejections:
    @pytest.mark.asyncio
    async def test_missing_signature(self, service, mock_replay_guard):
        with pytest.raises(WebhookSignatureError) as exc_info:
            await service.handle_delivery(b"{}", None, IP)

        assert exc_info.value.message == "Missing signature"
        mock_replay_guard.check_and_remember.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconfigured_secret(self, db_session, mock_replay_guard):
        service = PaystackWebhookService(db_session, mock_replay_guard, secret="")

        with pytest.raises(WebhookConfigurationError):
            await service.handle_delivery(b"{}", "abc", IP)

    @pytest.mark.asyncio
    async def test_invalid_signature_audited(self, db_session, service, mock_replay_guard):
        """
        WHY: The event must be committed although the request fails, so
        forged deliveries leave a trail.
        """
        body = b'{"event":"charge.success"}'

        with pytest.raises(WebhookSignatureError):
            await service.handle_delivery(body, compute_signature(body, "wrong"), IP)

        await db_session.rollback()
        event = (await db_session.execute(select(SecurityEvent))).scalar_one()
        assert event.event_type == "WEBHOOK_SIGNATURE_INVALID"
        assert event.severity == "high"
        assert event.ip_address == IP
        mock_replay_guard.check_and_remember.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_replay_rejected_and_audited(self, db_session, service, mock_replay_guard):
        mock_replay_guard.check_and_remember.return_value = False
        body, signature = _signed({"event": "charge.success", "data": {}})

        with pytest.raises(ReplayAttackError):
            await service.handle_delivery(body, signature, IP)

        await db_session.rollback()
        assert await _event_types(db_session) == ["WEBHOOK_REPLAY"]

    @pytest.mark.asyncio
    async def test_signed_non_json(self, service):
        body = b"not json"

        with pytest.raises(InvalidPayloadError) as exc_info:
            await service.handle_delivery(body, compute_signature(body, SECRET), IP)

        assert exc_info.value.message == "Invalid JSON payload"

    @pytest.mark.asyncio
    async def test_validation_errors_listed(self, service):
        body, signature = _signed({"event": "charge.success", "data": {"amount": -5}})

        with pytest.raises(InvalidPayloadError) as exc_info:
            await service.handle_delivery(body, signature, IP)

        errors = exc_info.value.context["errors"]
        assert "Missing payment reference" in errors
        assert "Missing or invalid amount" in errors


class TestChargeSuccess:
    @pytest.mark.asyncio
    async def test_activates_subscription(self, db_session, service, mock_notifier):
        business = await BusinessFactory.create(db_session)
        body, signature = _signed(_charge_success(business.id))

        ack = await service.handle_delivery(body, signature, IP)

        assert ack.received is True
        assert ack.status == "success"
        transaction = (await db_session.execute(select(PaymentTransaction))).scalar_one()
        assert transaction.status == "completed"
        assert "WEBHOOK_PROCESSED" in await _event_types(db_session)
        mock_notifier.notify_business_of_payment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_acknowledged(self, db_session, service, mock_notifier):
        """
        WHY: Paystack redelivers events with new signatures; a second
        delivery of a completed reference succeeds without side effects.
        """
        business = await BusinessFactory.create(db_session)

        body, signature = _signed(_charge_success(business.id))
        await service.handle_delivery(body, signature, IP)
        body, signature = _signed({**_charge_success(business.id), "id": 2})
        ack = await service.handle_delivery(body, signature, IP)

        assert ack.received is True
        transactions = (await db_session.execute(select(PaymentTransaction))).scalars().all()
        assert len(transactions) == 1
        assert mock_notifier.notify_business_of_payment.await_count == 1
        assert (await _event_types(db_session)).count("WEBHOOK_PROCESSED") == 2

    @pytest.mark.asyncio
    async def test_other_events_acknowledged(self, db_session, service):
        body, signature = _signed({"event": "transfer.success", "data": {"id": 99}})

        ack = await service.handle_delivery(body, signature, IP)

        assert ack.received is True
        assert await _event_types(db_session) == ["WEBHOOK_PROCESSED"]

    @pytest.mark.asyncio
    async def test_unknown_business_not_retried(self, db_session, service, mock_replay_guard):
        """
        WHY: A payment for a missing business will never succeed on retry;
        it propagates as a 404 and keeps its replay entry.
        """
        body, signature = _signed(_charge_success("0b9c6a2e-1111-4a3b-8c9d-123456789abc"))

        with pytest.raises(BusinessNotFoundError):
            await service.handle_delivery(body, signature, IP)

        mock_replay_guard.forget.assert_not_awaited()
        assert "INVALID_BUSINESS_PAYMENT" in await _event_types(db_session)


class TestProcessingFailure:
    @pytest.mark.asyncio
    async def test_unexpected_error_rolls_back_and_releases_replay(self, db_session, mock_replay_guard):
        processor = MagicMock()
        processor.process = AsyncMock(side_effect=RuntimeError("database exploded"))
        service = PaystackWebhookService(db_session, mock_replay_guard, processor=processor, secret=SECRET)
        body, signature = _signed(_charge_success("0b9c6a2e-1111-4a3b-8c9d-123456789abc"))

        with pytest.raises(WebhookProcessingError) as exc_info:
            await service.handle_delivery(body, signature, IP)

        assert exc_info.value.status_code == 500
        mock_replay_guard.forget.assert_awaited_once_with(signature)

        await db_session.rollback()
        assert sorted(await _event_types(db_session)) == ["WEBHOOK_ERROR", "WEBHOOK_PROCESSED"]
        error_event = (
            await db_session.execute(select(SecurityEvent).where(SecurityEvent.event_type == "WEBHOOK_ERROR"))
        ).scalar_one()
        assert error_event.meta["error"] == "database exploded"

    @pytest.mark.asyncio
    async def test_rejected_charge_keeps_processed_event(self, db_session, service, mock_replay_guard):
        """
        WHY: A charge rejected for bad metadata is rolled back by the
        request, but the record that the delivery arrived must remain.
        """
        business = await BusinessFactory.create(db_session)
        payload = _charge_success(business.id)
        payload["data"]["metadata"] = {"business_id": business.id}
        body, signature = _signed(payload)

        with pytest.raises(InvalidPayloadError):
            await service.handle_delivery(body, signature, IP)

        await db_session.rollback()
        assert await _event_types(db_session) == ["WEBHOOK_PROCESSED"]
        assert (await db_session.execute(select(PaymentTransaction))).scalars().all() == []
        mock_replay_guard.forget.assert_not_awaited()
