"""
Webhook signature, replay and payload validation.

WHAT: The checks that run on a Paystack delivery before anything is
written to the database.

WHY: The webhook endpoint is unauthenticated. Its only proof of origin is
the HMAC-SHA512 of the raw body keyed with the webhook secret, sent in the
x-paystack-signature header.

HOW:
1. verify_paystack_signature(): recompute the HMAC and compare in constant time
2. ReplayGuard: remember signatures in Redis for 5 minutes (SET NX EX)
3. validate_webhook_event(): collect every schema violation as a message
4. sanitize_payload(): strip markup and script-ish fragments from strings
"""

import hashlib
import hmac
import logging
import re
from typing import Any, List, Optional, Tuple

import redis.asyncio as aioredis

from boinvit.core.config import settings
from boinvit.schemas.paystack import PaystackEvent

logger = logging.getLogger(__name__)


EVENT_NAME_PATTERN = re.compile(r"^[A-Za-z_.]+$")
REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
SIGNATURE_PREFIX_PATTERN = re.compile(r"^(sha512=|sha256=)")


# ============================================================================
# Signature
# ============================================================================


def compute_signature(payload: bytes, secret: str) -> str:
    """HMAC-SHA512 hex digest of `payload` keyed with `secret`."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def verify_paystack_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check the x-paystack-signature header against the raw body.

    Args:
        payload: Raw request body, exactly as received
        signature: Header value, optionally prefixed with sha512= / sha256=
        secret: Webhook secret

    Returns:
        True only if the signature matches; never raises
    """
    if not payload or not signature or not secret:
        return False

    try:
        clean_signature = SIGNATURE_PREFIX_PATTERN.sub("", signature.strip())
        expected = compute_signature(payload, secret)
        return hmac.compare_digest(expected, clean_signature.lower())
    except (TypeError, ValueError) as e:
        logger.error(f"Webhook signature validation error: {e}")
        return False


# ============================================================================
# Replay protection
# ============================================================================


class ReplayGuard:
    """
    Rejects a signed delivery seen before within the replay window.

    WHY: Paystack bodies carry no signed timestamp, so a captured request
    could be resent indefinitely. Remembering the signature for the window
    stops immediate replays; the unique transaction reference stops the
    rest.

    Fail-open: if Redis is down the delivery is allowed through and an
    error is logged.
    """

    KEY_PREFIX = "webhook:replay"

    def __init__(self, redis_client: aioredis.Redis, window_seconds: Optional[int] = None):
        self._redis = redis_client
        self.window_seconds = window_seconds or settings.WEBHOOK_REPLAY_WINDOW_SECONDS

    def _key(self, signature: str) -> str:
        digest = hashlib.sha256(signature.encode("utf-8")).hexdigest()
        return f"{self.KEY_PREFIX}:{digest}"

    async def check_and_remember(self, signature: str) -> bool:
        """
        Record the signature.

        Returns:
            True if this is the first delivery in the window, False on replay
        """
        try:
            stored = await self._redis.set(self._key(signature), "1", nx=True, ex=self.window_seconds)
            return bool(stored)
        except Exception as e:
            logger.error(f"Replay guard Redis error (allowing delivery): {e}")
            return True

    async def forget(self, signature: str) -> None:
        """
        Release a signature so Paystack's retry of a failed delivery is
        not mistaken for a replay.
        """
        try:
            await self._redis.delete(self._key(signature))
        except Exception as e:
            logger.error(f"Replay guard Redis error on release: {e}")


_replay_guard: Optional[ReplayGuard] = None


async def get_replay_guard() -> ReplayGuard:
    """Get or create the global replay guard (FastAPI dependency)."""
    global _replay_guard

    if _replay_guard is None:
        redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        _replay_guard = ReplayGuard(redis_client)

    return _replay_guard


# ============================================================================
# Payload validation
# ============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_webhook_event(data: Any) -> Tuple[Optional[PaystackEvent], List[str]]:
    """
    Validate a decoded webhook body.

    Every violation is collected rather than stopping at the first one, so
    the 400 response lists all of them.

    Returns:
        (event, []) when valid, (None, errors) otherwise
    """
    errors: List[str] = []

    if not isinstance(data, dict):
        return None, ["Invalid request body"]

    event_name = data.get("event")
    if not event_name or not isinstance(event_name, str):
        errors.append("Missing or invalid event type")
    elif not EVENT_NAME_PATTERN.match(event_name):
        errors.append("Invalid event type format")

    event_data = data.get("data")
    if not isinstance(event_data, dict):
        errors.append("Missing or invalid event data")
        event_data = None

    if event_name == "charge.success" and event_data is not None:
        reference = event_data.get("reference")
        if not reference or not isinstance(reference, str):
            errors.append("Missing payment reference")
        elif not REFERENCE_PATTERN.match(reference):
            errors.append("Invalid payment reference format")

        metadata = event_data.get("metadata")
        if not isinstance(metadata, dict):
            errors.append("Missing payment metadata")
            metadata = {}

        amount = event_data.get("amount")
        if not _is_number(amount) or amount <= 0:
            errors.append("Missing or invalid amount")

        business_id = metadata.get("business_id")
        if business_id and (not isinstance(business_id, str) or not UUID_PATTERN.match(business_id)):
            errors.append("Invalid business ID format in metadata")

    if errors:
        return None, errors

    return PaystackEvent(event=event_name, data=event_data), []


# ============================================================================
# Sanitization
# ============================================================================


_SANITIZE_RULES = (
    (re.compile(r"[<>]"), ""),
    (re.compile(r"javascript:", re.IGNORECASE), ""),
    (re.compile(r"on\w+=", re.IGNORECASE), ""),
    (re.compile(r"data:", re.IGNORECASE), ""),
    (re.compile(r"vbscript:", re.IGNORECASE), ""),
    (re.compile(r"[\x00-\x1f\x7f-\x9f]"), ""),
)


def sanitize_text(value: str) -> str:
    """Strip markup, script protocols, inline handlers and control characters."""
    for pattern, replacement in _SANITIZE_RULES:
        value = pattern.sub(replacement, value)
    return value.strip()


def sanitize_payload(payload: Any) -> Any:
    """
    Recursively sanitize every string in a decoded JSON value.

    None values inside objects are dropped; numbers and booleans pass
    through unchanged.
    """
    if isinstance(payload, dict):
        return {
            key: sanitize_payload(value)
            for key, value in payload.items()
            if value is not None
        }
    if isinstance(payload, list):
        return [sanitize_payload(item) for item in payload if item is not None]
    if isinstance(payload, str):
        return sanitize_text(payload)
    return payload
