"""
Unit tests for the Paystack and Supabase broadcast HTTP clients.

WHY: Paystack answers `status: false` with HTTP 200 for many business
errors, and a timeout must become a clean 502 instead of a stack trace.
Tests use httpx.MockTransport so no request leaves the process.
"""

import json

import httpx
import pytest

from boinvit.core.exceptions import PaystackError
from boinvit.services.notification_service import NotificationService
from boinvit.services.paystack_client import PaystackClient


def _paystack(handler) -> PaystackClient:
    return PaystackClient(
        secret_key="sk_test_boinvit",
        base_url="https://api.paystack.co/",
        transport=httpx.MockTransport(handler),
    )


class TestPaystackClient:
    @pytest.mark.asyncio
    async def test_initialize_transaction(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {"authorization_url": "https://checkout.paystack.com/x", "reference": "SUB_1"},
                },
            )

        data = await _paystack(handler).initialize_transaction(
            email="owner@example.com",
            amount_minor=102000,
            reference="SUB_1",
            callback_url="http://localhost:5173/subscription/callback",
            metadata={"plan_type": "starter"},
            channels=["card"],
        )

        assert data["authorization_url"] == "https://checkout.paystack.com/x"
        assert seen["url"] == "https://api.paystack.co/transaction/initialize"
        assert seen["auth"] == "Bearer sk_test_boinvit"
        assert seen["body"]["amount"] == 102000
        assert seen["body"]["channels"] == ["card"]
        assert "subaccount" not in seen["body"]

    @pytest.mark.asyncio
    async def test_verify_and_charge_paths(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append((request.method, request.url.path))
            return httpx.Response(200, json={"status": True, "data": {"status": "success"}})

        client = _paystack(handler)
        await client.verify_transaction("SUB_1")
        await client.get_charge("MPESA_1")
        await client.create_charge("a@b.c", 100, "MPESA_2", {"phone": "254712345678", "provider": "mpesa"})

        assert paths == [
            ("GET", "/transaction/verify/SUB_1"),
            ("GET", "/charge/MPESA_1"),
            ("POST", "/charge"),
        ]

    @pytest.mark.asyncio
    async def test_status_false_is_error(self):
        def handler(request):
            return httpx.Response(200, json={"status": False, "message": "Invalid Email Address Passed"})

        with pytest.raises(PaystackError) as exc_info:
            await _paystack(handler).verify_transaction("SUB_1")

        assert exc_info.value.message == "Invalid Email Address Passed"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_http_error_without_json(self):
        def handler(request):
            return httpx.Response(503, text="<html>Service Unavailable</html>")

        with pytest.raises(PaystackError) as exc_info:
            await _paystack(handler).verify_transaction("SUB_1")

        assert exc_info.value.message == "Paystack returned HTTP 503"
        assert exc_info.value.context["provider_status"] == 503

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(PaystackError) as exc_info:
            await _paystack(handler).get_charge("MPESA_1")

        assert exc_info.value.message == "Payment provider timed out"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PaystackError) as exc_info:
            await _paystack(handler).get_charge("MPESA_1")

        assert exc_info.value.message == "Payment provider unreachable"

    @pytest.mark.asyncio
    async def test_missing_secret_key(self, monkeypatch):
        from boinvit.services import paystack_client as module

        monkeypatch.setattr(module.settings, "PAYSTACK_SECRET_KEY", "")
        client = PaystackClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        with pytest.raises(PaystackError) as exc_info:
            await client.verify_transaction("SUB_1")

        assert exc_info.value.status_code == 500


class TestNotificationService:
    @pytest.mark.asyncio
    async def test_new_payment_broadcast(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["apikey"] = request.headers["apikey"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(202)

        notifier = NotificationService(
            "https://project.supabase.co/", "service-role", transport=httpx.MockTransport(handler)
        )

        assert await notifier.notify_business_of_payment("b1", 1020, "SUB_1") is True

        assert seen["url"] == "https://project.supabase.co/realtime/v1/api/broadcast"
        assert seen["apikey"] == "service-role"
        message = seen["body"]["messages"][0]
        assert message["topic"] == "business-notifications-b1"
        assert message["event"] == "new_payment"
        assert message["payload"]["payment_amount"] == 1020.0
        assert message["payload"]["client_name"] == "Client"

    @pytest.mark.asyncio
    async def test_rejected_broadcast_returns_false(self):
        notifier = NotificationService(
            "https://project.supabase.co",
            "service-role",
            transport=httpx.MockTransport(lambda r: httpx.Response(401)),
        )

        assert await notifier.broadcast("t", "e", {}) is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        notifier = NotificationService(
            "https://project.supabase.co", "service-role", transport=httpx.MockTransport(handler)
        )

        assert await notifier.broadcast("t", "e", {}) is False

    @pytest.mark.asyncio
    async def test_unconfigured_skips(self, monkeypatch):
        from boinvit.services import notification_service as module

        monkeypatch.setattr(module.settings, "SUPABASE_SERVICE_ROLE_KEY", "")

        assert await NotificationService("https://project.supabase.co").broadcast("t", "e", {}) is False
