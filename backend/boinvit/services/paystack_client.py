"""
Paystack API client.

WHAT: Async HTTP client for the Paystack endpoints the platform uses:
transaction initialize/verify, charge (M-Pesa STK push) and subaccounts.

WHY: Every Paystack call goes through one `_request` so that
authentication, timeouts and error mapping are identical. A Paystack
failure always surfaces as PaystackError (502).

HOW: httpx.AsyncClient with the secret key as bearer token. Paystack wraps
every response as {"status": bool, "message": str, "data": {...}}; a
`status: false` body is an error even when the HTTP status is 200.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from boinvit.core.config import settings
from boinvit.core.exceptions import PaystackError

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 30.0


class PaystackClient:
    """
    Async HTTP client for the Paystack API.

    Example:
        client = PaystackClient()
        data = await client.verify_transaction("SUB_1712345678_ab12")
        if data["status"] == "success":
            ...
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            secret_key: Paystack secret key (defaults to PAYSTACK_SECRET_KEY)
            base_url: API base URL (defaults to PAYSTACK_BASE_URL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._secret_key = secret_key or settings.PAYSTACK_SECRET_KEY
        self._base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.PAYSTACK_TIMEOUT_SECONDS or DEFAULT_TIMEOUT
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        if not self._secret_key:
            raise PaystackError(message="Paystack secret key not configured", status_code=500)
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make an authenticated request and return the `data` member.

        Raises:
            PaystackError: On network failure, non-2xx status or `status: false`
        """
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method=method, url=url, headers=headers, json=data)
        except httpx.TimeoutException as e:
            logger.error(f"Paystack timeout on {endpoint}: {e}")
            raise PaystackError(message="Payment provider timed out", endpoint=endpoint)
        except httpx.RequestError as e:
            logger.error(f"Paystack request error on {endpoint}: {e}")
            raise PaystackError(message="Payment provider unreachable", endpoint=endpoint)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"Paystack returned HTTP {response.status_code}"
            logger.warning(f"Paystack {endpoint} failed ({response.status_code}): {message}")
            raise PaystackError(
                message=message,
                endpoint=endpoint,
                provider_status=response.status_code,
            )

        return body.get("data") or {}

    # =========================================================================
    # Transactions
    # =========================================================================

    async def initialize_transaction(
        self,
        email: str,
        amount_minor: int,
        reference: str,
        currency: str = "KES",
        callback_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        channels: Optional[List[str]] = None,
        subaccount: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a hosted checkout.

        Args:
            amount_minor: Amount in the currency's minor unit (x100)

        Returns:
            {"authorization_url", "access_code", "reference"}
        """
        payload: Dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "reference": reference,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url
        if channels:
            payload["channels"] = channels
        if subaccount:
            payload["subaccount"] = subaccount

        return await self._request("POST", "/transaction/initialize", payload)

    async def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """Look up a transaction by reference (GET /transaction/verify/:reference)."""
        return await self._request("GET", f"/transaction/verify/{reference}")

    # =========================================================================
    # Charges (mobile money)
    # =========================================================================

    async def create_charge(
        self,
        email: str,
        amount_minor: int,
        reference: str,
        mobile_money: Dict[str, str],
        currency: str = "KES",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a direct charge; for M-Pesa this sends the STK push prompt.

        Returns:
            Charge data including `status` (send_otp, pay_offline, pending...)
        """
        payload = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "reference": reference,
            "mobile_money": mobile_money,
            "metadata": metadata or {},
        }
        return await self._request("POST", "/charge", payload)

    async def get_charge(self, reference: str) -> Dict[str, Any]:
        """Check a pending charge (GET /charge/:reference)."""
        return await self._request("GET", f"/charge/{reference}")

    # =========================================================================
    # Subaccounts
    # =========================================================================

    async def create_subaccount(
        self,
        business_name: str,
        settlement_bank: str,
        account_number: str,
        percentage_charge: float,
        primary_contact_email: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a split-payment subaccount for a business.

        Returns:
            Subaccount data including `subaccount_code`
        """
        payload: Dict[str, Any] = {
            "business_name": business_name,
            "settlement_bank": settlement_bank,
            "account_number": account_number,
            "percentage_charge": percentage_charge,
        }
        if primary_contact_email:
            payload["primary_contact_email"] = primary_contact_email
        if description:
            payload["description"] = description

        return await self._request("POST", "/subaccount", payload)


def get_paystack_client() -> PaystackClient:
    """FastAPI dependency; overridden in tests."""
    return PaystackClient()
