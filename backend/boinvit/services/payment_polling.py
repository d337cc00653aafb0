"""
Capped polling and background reconciliation for pending payments.

WHAT:
- poll_payment_status(): await a status check with exponential backoff
  until it reaches a terminal status or the attempt cap (the `wait` mode
  of the M-Pesa status endpoint)
- PaymentReconciliationService: APScheduler job that verifies pending
  transactions with Paystack and finishes or expires them

WHY: Mobile money has no synchronous confirmation and webhooks can be
lost. Every pending transaction is re-checked on a widening schedule, and
one that never resolves is marked failed instead of staying pending
forever. There is no circuit breaker; the attempt cap is the only limit.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.config import settings
from boinvit.core.exceptions import AppException
from boinvit.dao.payment import ClientBusinessTransactionDAO, PaymentTransactionDAO
from boinvit.db.session import AsyncSessionLocal
from boinvit.models.payment import PaymentStatus, TransactionType
from boinvit.services.charge_processor import ChargeProcessor
from boinvit.services.paystack_client import PaystackClient

logger = logging.getLogger(__name__)


TERMINAL_STATUSES = (PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value)

BASE_CHECK_DELAY_SECONDS = 30
MAX_CHECK_DELAY_SECONDS = 3600


# ============================================================================
# Request-side polling
# ============================================================================


async def poll_payment_status(
    check: Callable[[], Awaitable[Dict[str, Any]]],
    max_attempts: int = 12,
    initial_delay: float = 2.0,
    backoff: float = 1.5,
    max_delay: float = 30.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Dict[str, Any]:
    """
    Poll `check()` until it reports completed/failed or attempts run out.

    Args:
        check: Coroutine function returning a dict with a "status" key
        max_attempts: Number of checks before giving up
        initial_delay: Seconds to wait before the second check
        backoff: Multiplier applied to the delay after each check
        max_delay: Upper bound for a single wait

    Returns:
        The last check result, with "attempts" and "timed_out" added
    """
    delay = initial_delay
    result: Dict[str, Any] = {"status": PaymentStatus.PENDING.value}

    for attempt in range(1, max_attempts + 1):
        result = dict(await check())
        if result.get("status") in TERMINAL_STATUSES:
            result.update(attempts=attempt, timed_out=False)
            return result

        if attempt < max_attempts:
            await sleep(delay)
            delay = min(delay * backoff, max_delay)

    logger.info(f"Payment polling gave up after {max_attempts} attempts")
    result.update(attempts=max_attempts, timed_out=True)
    return result


# ============================================================================
# Background reconciliation
# ============================================================================


def next_check_delay(attempts: int) -> timedelta:
    """30s, 60s, 120s ... capped at one hour."""
    seconds = BASE_CHECK_DELAY_SECONDS * (2 ** attempts)
    return timedelta(seconds=min(seconds, MAX_CHECK_DELAY_SECONDS))


class PaymentReconciliationService:
    """
    Finishes pending payments the webhook never confirmed.

    Example:
        service = PaymentReconciliationService()
        counts = await service.reconcile_pending()
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        paystack: Optional[PaystackClient] = None,
        max_attempts: Optional[int] = None,
    ):
        """
        Args:
            session_factory: Factory for database sessions (defaults to the
                             application session maker)
            paystack: Paystack client (defaults to one built from settings)
            max_attempts: Status checks per transaction before it is failed
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self._paystack = paystack
        self.max_attempts = max_attempts or settings.PAYMENT_STATUS_MAX_CHECKS

    @property
    def paystack(self) -> PaystackClient:
        if self._paystack is None:
            self._paystack = PaystackClient()
        return self._paystack

    async def reconcile_pending(self) -> Dict[str, int]:
        """
        Verify due pending transactions and expire exhausted ones.

        HOW:
        1. Select pending rows whose next check is due
        2. Bump the attempt counter and push the next check out before
           calling Paystack, so a crash can't cause a tight retry loop
        3. Apply the verify result through ChargeProcessor
        4. Mark rows that used every attempt as failed, along with the
           client transaction behind a client-to-business payment

        Returns:
            Counts: checked, completed, failed, pending, errors, expired
        """
        counts = {"checked": 0, "completed": 0, "failed": 0, "pending": 0, "errors": 0, "expired": 0}

        async with self._session_factory() as session:
            transactions = PaymentTransactionDAO(session)
            now = datetime.utcnow()

            due = await transactions.get_due_for_status_check(now, self.max_attempts)
            references = [tx.paystack_reference for tx in due]

            for tx in due:
                tx.status_check_attempts = (tx.status_check_attempts or 0) + 1
                tx.next_status_check_at = now + next_check_delay(tx.status_check_attempts)
            await session.commit()

            for reference in references:
                counts["checked"] += 1
                status = await self._check_one(session, reference)
                counts[status] += 1

            exhausted = await transactions.get_exhausted(self.max_attempts)
            client_transactions = ClientBusinessTransactionDAO(session)
            for tx in exhausted:
                tx.status = PaymentStatus.FAILED.value
                tx.next_status_check_at = None
                if tx.transaction_type == TransactionType.CLIENT_TO_BUSINESS.value and tx.paystack_reference:
                    client_tx = await client_transactions.get_by_reference(tx.paystack_reference)
                    if client_tx is not None and client_tx.status == PaymentStatus.PENDING.value:
                        client_tx.status = PaymentStatus.FAILED.value
                logger.info(f"Payment {tx.paystack_reference} expired after {self.max_attempts} checks")
            counts["expired"] = len(exhausted)
            await session.commit()

        if counts["checked"] or counts["expired"]:
            logger.info(f"Payment reconciliation finished: {counts}")
        return counts

    async def _check_one(self, session: AsyncSession, reference: str) -> str:
        """Returns completed, failed, pending or errors."""
        try:
            data = await self.paystack.verify_transaction(reference)
            data.setdefault("reference", reference)
            status, _ = await ChargeProcessor(session).apply_provider_status(
                data, event_name="reconciliation"
            )
            return status

        except AppException as e:
            await session.rollback()
            logger.warning(f"Reconciliation of {reference} failed: {e.message}")
            return "errors"

        except Exception as e:
            await session.rollback()
            logger.error(f"Unexpected error reconciling {reference}: {e}", exc_info=True)
            return "errors"


_reconciliation_service: Optional[PaymentReconciliationService] = None


def get_reconciliation_service() -> PaymentReconciliationService:
    """Get or create the global reconciliation service."""
    global _reconciliation_service

    if _reconciliation_service is None:
        _reconciliation_service = PaymentReconciliationService()

    return _reconciliation_service
