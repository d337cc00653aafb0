"""
Business payment notifications over Supabase Realtime broadcast.

WHAT: Pushes a `new_payment` message to the business owner's open
dashboards on the `business-notifications-{business_id}` topic.

WHY: Broadcast reaches dashboards immediately, before the database change
events arrive. It is a courtesy signal only: failures are logged and
reported as False, never raised, because the payment has already been
recorded.

HOW: POST {SUPABASE_URL}/realtime/v1/api/broadcast with the service role
key, using httpx.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

import httpx

from boinvit.core.config import settings

logger = logging.getLogger(__name__)


class NotificationService:
    """Best-effort Realtime broadcast sender."""

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.supabase_url = (supabase_url or settings.SUPABASE_URL).rstrip("/")
        self.service_key = service_key or settings.SUPABASE_SERVICE_ROLE_KEY
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.supabase_url and self.service_key)

    async def broadcast(self, topic: str, event: str, payload: dict) -> bool:
        """
        Send one broadcast message.

        Returns:
            True if Supabase accepted the message
        """
        if not self.is_configured:
            logger.debug("Supabase broadcast not configured, skipping")
            return False

        body = {"messages": [{"topic": topic, "event": event, "payload": payload}]}
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.supabase_url}/realtime/v1/api/broadcast",
                    json=body,
                    headers=headers,
                )
        except httpx.HTTPError as e:
            logger.warning(f"Realtime broadcast to {topic} failed: {e}")
            return False

        if response.status_code >= 400:
            logger.warning(f"Realtime broadcast to {topic} returned {response.status_code}")
            return False

        return True

    async def notify_business_of_payment(
        self,
        business_id: str,
        amount: Union[Decimal, float],
        reference: str,
        client_name: Optional[str] = None,
    ) -> bool:
        """Broadcast `new_payment` to a business's dashboards."""
        return await self.broadcast(
            topic=f"business-notifications-{business_id}",
            event="new_payment",
            payload={
                "business_id": business_id,
                "payment_amount": float(amount),
                "payment_reference": reference,
                "client_name": client_name or "Client",
                "timestamp": datetime.utcnow().isoformat(),
            },
        )


def get_notification_service() -> NotificationService:
    return NotificationService()
