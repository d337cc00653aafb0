"""
Tests for custom exception hierarchy.

WHY: Comprehensive exception testing ensures:
1. Exceptions serialize correctly without leaking sensitive data
2. HTTP status codes map correctly (Paystack retries on 5xx only)
3. Exception handlers render the common error body
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from boinvit.core.exception_handlers import app_exception_handler
from boinvit.core.exceptions import (
    AppException,
    AuthenticationError,
    BookingNotFoundError,
    BusinessAccessDenied,
    BusinessNotFoundError,
    BusinessRuleViolation,
    InputError,
    InvalidPayloadError,
    InvalidStateTransitionError,
    PaystackError,
    RateLimitExceeded,
    ReplayAttackError,
    ResourceNotFoundError,
    SubscriptionLimitError,
    TokenExpiredError,
    ValidationError,
    WebhookConfigurationError,
    WebhookProcessingError,
    WebhookSignatureError,
)


class TestAppException:
    """Test base AppException class."""

    def test_default_message(self):
        """Verify default message is used when none provided."""
        exc = AppException()
        assert exc.message == "An unexpected error occurred"
        assert exc.status_code == 500

    def test_custom_message_and_status(self):
        exc = AppException(message="Custom error message", status_code=418)
        assert exc.message == "Custom error message"
        assert exc.status_code == 418

    def test_context_data(self):
        """Verify context data is stored."""
        exc = AppException(business_id="abc", reference="SUB_1")
        assert exc.context == {"business_id": "abc", "reference": "SUB_1"}

    def test_to_dict_basic(self):
        exc = InputError(message="Invalid plan type", plan_type="gold")

        assert exc.to_dict() == {
            "error": "InputError",
            "message": "Invalid plan type",
            "status_code": 400,
            "details": {"plan_type": "gold"},
        }

    def test_to_dict_without_context(self):
        assert AppException().to_dict()["details"] is None

    def test_sensitive_context_filtered(self):
        """
        Secrets and signatures never reach the response body.

        WHY: Webhook errors carry request context; echoing the signature
        or keys back would leak them.
        """
        exc = WebhookSignatureError(signature="abc123", secret="whsec", ip_address="1.2.3.4")
        details = exc.to_dict()["details"]

        assert details == {"ip_address": "1.2.3.4"}


class TestStatusCodes:
    """Each exception maps to the status the API contract expects."""

    @pytest.mark.parametrize(
        "exc_class,status_code",
        [
            (AuthenticationError, 401),
            (TokenExpiredError, 401),
            (BusinessAccessDenied, 404),
            (InputError, 400),
            (InvalidPayloadError, 400),
            (ResourceNotFoundError, 404),
            (BusinessNotFoundError, 404),
            (BookingNotFoundError, 404),
            (BusinessRuleViolation, 422),
            (InvalidStateTransitionError, 400),
            (SubscriptionLimitError, 422),
            (WebhookSignatureError, 401),
            (ReplayAttackError, 400),
            (WebhookConfigurationError, 500),
            (WebhookProcessingError, 500),
            (PaystackError, 502),
            (RateLimitExceeded, 429),
        ],
    )
    def test_status_code(self, exc_class, status_code):
        assert exc_class().status_code == status_code

    def test_webhook_messages(self):
        assert WebhookSignatureError().message == "Invalid signature"
        assert ReplayAttackError().message == "Replay attack detected"
        assert WebhookConfigurationError().message == "Webhook secret not configured"
        assert BusinessNotFoundError().message == "Business not found or inactive"

    def test_business_not_found_is_resource_not_found(self):
        assert issubclass(BusinessNotFoundError, ResourceNotFoundError)

    def test_invalid_payload_is_validation_error(self):
        assert issubclass(InvalidPayloadError, ValidationError)


class TestExceptionHandler:
    """The handler renders any AppException as the common JSON body."""

    @pytest.fixture
    def app(self):
        app = FastAPI()
        app.add_exception_handler(AppException, app_exception_handler)

        @app.get("/replay")
        async def replay():
            raise ReplayAttackError()

        @app.get("/limit")
        async def limit():
            raise SubscriptionLimitError(message="Monthly booking limit reached", bookings_limit=1000)

        return app

    def test_handler_renders_status_and_body(self, app):
        response = TestClient(app).get("/replay")

        assert response.status_code == 400
        assert response.json() == {
            "error": "ReplayAttackError",
            "message": "Replay attack detected",
            "status_code": 400,
            "details": None,
        }

    def test_handler_includes_context(self, app):
        response = TestClient(app).get("/limit")

        assert response.status_code == 422
        assert response.json()["details"] == {"bookings_limit": 1000}
