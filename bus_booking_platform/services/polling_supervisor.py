"""
Bounded polling of the gateway for a payment's final status.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.payment import FailureReason
from ..utils.exceptions import PaymentNotFoundError, ReconciliationError
from .ledger import PaymentLedger
from .payment_gateway import NormalizedStatus, PaymentGatewayAdapter
from .reconciler import (
    OutcomeKind,
    PaymentReconciler,
    ReconciliationOutcome,
    ReconciliationSource,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_MAX_POLL_ATTEMPTS = 20


class PollingResult(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class PollAttempt:
    """One poll: what the gateway said and what the ledger made of it."""
    gateway_status: NormalizedStatus
    outcome: Optional[ReconciliationOutcome]


@dataclass(frozen=True)
class PollingReport:
    result: PollingResult
    attempts: int
    reference: str
    reason: Optional[FailureReason] = None


_RESULT_FOR_OUTCOME = {
    OutcomeKind.COMPLETED: PollingResult.SUCCEEDED,
    OutcomeKind.FAILED: PollingResult.FAILED,
    OutcomeKind.CANCELLED: PollingResult.CANCELLED,
}


class PollingSupervisor:
    """
    Polls the gateway until the payment settles or the attempt budget runs out.

    Gateway hiccups and ledger write failures use up an attempt but never
    settle the payment. On timeout the payment is left PENDING so a late
    webhook can still settle it. Cancelling the task running ``run`` stops
    the loop at the next await.
    """

    def __init__(
        self,
        gateway: PaymentGatewayAdapter,
        reconciler: PaymentReconciler,
        session_factory: async_sessionmaker[AsyncSession],
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.gateway = gateway
        self.reconciler = reconciler
        self.session_factory = session_factory
        self.interval = interval
        self.max_attempts = max_attempts
        self.sleep = sleep

    async def _poll_handle_for(self, reference: str) -> Optional[str]:
        async with self.session_factory() as session:
            async with session.begin():
                payment = await PaymentLedger(session).get_by_reference(reference)
                if payment is None:
                    raise PaymentNotFoundError(reference)
                return payment.poll_handle

    async def poll_once(self, reference: str, poll_handle: Optional[str] = None) -> PollAttempt:
        """
        Poll the gateway once and feed the answer to the reconciler.

        Raises:
            PaymentNotFoundError: No payment carries the reference
        """
        if poll_handle is None:
            poll_handle = await self._poll_handle_for(reference)
        if not poll_handle:
            return PollAttempt(NormalizedStatus.PENDING, None)

        status = await self.gateway.poll_status(poll_handle)
        if status == NormalizedStatus.TRANSIENT_ERROR:
            return PollAttempt(status, None)

        try:
            outcome = await self.reconciler.apply_status(reference, status, ReconciliationSource.POLL)
        except ReconciliationError as e:
            logger.warning(f"Poll result for {reference} not applied, will retry: {e.message}")
            return PollAttempt(status, None)

        return PollAttempt(status, outcome)

    async def run(self, reference: str) -> PollingReport:
        """
        Poll every ``interval`` seconds for at most ``max_attempts`` attempts.

        Raises:
            PaymentNotFoundError: No payment carries the reference
        """
        poll_handle = await self._poll_handle_for(reference)
        logger.info(f"Polling {reference} (every {self.interval}s, up to {self.max_attempts} attempts)")

        for attempt in range(1, self.max_attempts + 1):
            polled = await self.poll_once(reference, poll_handle=poll_handle)
            outcome = polled.outcome

            if outcome is not None and outcome.is_terminal:
                result = _RESULT_FOR_OUTCOME[outcome.kind]
                logger.info(f"Polling {reference} finished on attempt {attempt}: {result.value}")
                return PollingReport(result, attempt, reference, outcome.reason)

            logger.debug(f"Poll {attempt}/{self.max_attempts} for {reference}: {polled.gateway_status.value}")

            if attempt < self.max_attempts:
                await self.sleep(self.interval)

        logger.warning(f"Polling {reference} timed out after {self.max_attempts} attempts; payment left pending")
        return PollingReport(PollingResult.TIMEOUT, self.max_attempts, reference)
