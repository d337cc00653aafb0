"""
Security event logging service.

WHAT: Persists webhook and payment security decisions to the
security_events table.

WHY: Rejected signatures, payments for unknown businesses and processing
failures need a durable trail, not just a log line, so they can be
reviewed from the database later.

HOW: Wraps SecurityEventDAO; IP and user agent are taken from the
request context when the caller doesn't pass them. Writes happen in a
savepoint and never raise, so logging can't break the caller.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.dao.events import SecurityEventDAO
from boinvit.middleware.request_context import get_request_context
from boinvit.models.events import SecurityEvent

logger = logging.getLogger(__name__)


class SecurityEventType:
    """Event type names stored in security_events.event_type."""

    WEBHOOK_PROCESSED = "WEBHOOK_PROCESSED"
    WEBHOOK_ERROR = "WEBHOOK_ERROR"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"
    WEBHOOK_REPLAY = "WEBHOOK_REPLAY"
    INVALID_BUSINESS_PAYMENT = "INVALID_BUSINESS_PAYMENT"


class SecurityEventService:
    """
    Service for writing security events.

    Example:
        events = SecurityEventService(db)
        await events.log_event(
            SecurityEventType.WEBHOOK_PROCESSED,
            "Paystack webhook processed: charge.success",
            metadata={"reference": reference},
        )
    """

    def __init__(self, session: AsyncSession):
        self.dao = SecurityEventDAO(session)
        self._session = session

    async def log_event(
        self,
        event_type: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        severity: str = "low",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        """
        Write one security event.

        Returns:
            Created SecurityEvent or None if writing failed

        Note:
            Never raises. Failures are logged to the application logger.
        """
        ctx = get_request_context()
        if ctx:
            ip_address = ip_address or ctx.ip_address
            user_agent = user_agent or ctx.user_agent

        payload = dict(metadata or {})
        payload.setdefault("timestamp", datetime.utcnow().isoformat())

        try:
            async with self._session.begin_nested():
                return await self.dao.create(
                    event_type=event_type,
                    description=description,
                    severity=severity,
                    meta=payload,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
        except Exception as e:
            logger.error(f"Failed to write security event {event_type}: {e}", exc_info=True)
            return None
