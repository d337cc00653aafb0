"""
Application exceptions.

WHY: Every error that reaches a client (dashboard user, booking page or
Paystack itself) is rendered from one of these classes, so the JSON body
always has the same shape: {"error", "message", "status_code", "details"}.

IMPORTANT: Raise these instead of HTTPException or bare Exception from
services and routes.
"""

from typing import Any, Dict, Optional


# Context keys never echoed back to callers (webhook signatures included)
SENSITIVE_CONTEXT_KEYS = frozenset({"password", "token", "secret", "key", "api_key", "signature"})


class AppException(Exception):
    """
    Root of the hierarchy.

    Subclasses set `status_code` and `default_message`; keyword context
    passed at raise time ends up in `details` with sensitive keys removed.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, **context: Any):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """JSON error body; `details` is None when no safe context remains."""
        details = {
            name: value
            for name, value in self.context.items()
            if name.lower() not in SENSITIVE_CONTEXT_KEYS
        }
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": details or None,
        }


# ============================================================================
# Supabase session tokens
# ============================================================================


class AuthenticationError(AppException):
    """Missing, expired or forged bearer token (401)."""

    status_code = 401
    default_message = "Authentication failed"


class TokenExpiredError(AuthenticationError):
    """Raised when the Supabase access token has expired."""

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when the Supabase access token is malformed or badly signed."""

    default_message = "Token is invalid"


# ============================================================================
# Bad input
# ============================================================================


class ValidationError(AppException):
    """
    Request data the API cannot act on.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


class InputError(ValidationError):
    """Amounts out of range, unknown plans or intervals, bad phone numbers."""

    default_message = "Invalid input"


# ============================================================================
# Missing records
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    A record the caller asked for does not exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class BusinessAccessDenied(ResourceNotFoundError):
    """
    Raised when a user touches a business they do not own.

    WHY: 404 instead of 403 so tenants cannot discover other tenants'
    business ids.
    """

    default_message = "Business not found"


class BusinessNotFoundError(ResourceNotFoundError):
    """Raised when a business is missing or deactivated."""

    default_message = "Business not found or inactive"


class BookingNotFoundError(ResourceNotFoundError):
    default_message = "Booking not found"


# ============================================================================
# Booking and plan rules
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    The request is well formed but breaks a booking or billing rule.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when a booking status change is not allowed.

    Bookings can only be confirmed out of `pending_payment`; anything else
    would confirm an unpaid slot.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


class SubscriptionLimitError(BusinessRuleViolation):
    """Raised when a plan's staff or booking limit would be exceeded."""

    default_message = "Subscription limit reached"


# ============================================================================
# Paystack webhook deliveries
# ============================================================================


class WebhookSignatureError(AppException):
    """
    Raised when the x-paystack-signature header is missing or wrong.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Invalid signature"


class ReplayAttackError(AppException):
    """
    Raised when the same signed delivery arrives twice inside the replay window.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Replay attack detected"


class InvalidPayloadError(ValidationError):
    """Raised when a webhook body is not JSON or fails schema validation."""

    default_message = "Invalid input"


class WebhookConfigurationError(AppException):
    """
    Raised when the webhook secret is not configured.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Webhook secret not configured"


class WebhookProcessingError(AppException):
    """
    Raised when a verified webhook could not be applied.

    Paystack retries deliveries that don't get a 2xx, so this status is
    what triggers redelivery.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Webhook processing failed"


# ============================================================================
# Paystack and Supabase
# ============================================================================


class ExternalServiceError(AppException):
    """
    Paystack or Supabase failed us; the caller may retry later.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class PaystackError(ExternalServiceError):
    """Raised when a Paystack API call fails or answers `status: false`."""

    default_message = "Payment provider error"


class RealtimeError(ExternalServiceError):
    """Raised when a Supabase Realtime channel cannot be created."""

    default_message = "Realtime service error"


# ============================================================================
# Rate limiting
# ============================================================================


class RateLimitExceeded(AppException):
    """
    Too many webhook or payment-initiation requests from one IP (429).

    `retry_after` in the context becomes the Retry-After header.
    """

    status_code = 429
    default_message = "Rate limit exceeded"
