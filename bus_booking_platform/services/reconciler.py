"""
Payment reconciliation.

``PaymentReconciler.apply_status`` is the only code path that moves a
payment and its ticket out of PENDING, commits a seat, or triggers the
confirmation emails. The webhook and the polling loop both feed it, in any
order and any number of times; only the first terminal status for a
payment has an effect.
"""

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..cache import CacheInvalidator
from ..models.payment import FailureReason, Payment, PaymentStatus
from ..models.ticket import TicketStatus
from ..utils.exceptions import PaymentNotFoundError, ReconciliationError, SeatExhaustedError
from ..utils.logging_config import log_business_event
from .ledger import PaymentLedger, TicketLedger
from .payment_gateway import NormalizedStatus
from .seat_inventory import SeatInventory

if TYPE_CHECKING:
    from ..tasks.dispatcher import TaskDispatcher

logger = logging.getLogger(__name__)


class ReconciliationSource(str, enum.Enum):
    WEBHOOK = "webhook"
    POLL = "poll"


class OutcomeKind(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    STILL_PENDING = "still_pending"


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of applying one gateway status.

    ``applied`` is True only for the call that performed the terminal
    transition; repeat deliveries get the stored outcome with False.
    """
    kind: OutcomeKind
    reference: str
    payment_id: UUID
    ticket_id: UUID
    reason: Optional[FailureReason] = None
    applied: bool = False
    bus_id: Optional[UUID] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind != OutcomeKind.STILL_PENDING

    @classmethod
    def from_payment(
        cls, payment: Payment, applied: bool = False, bus_id: Optional[UUID] = None
    ) -> "ReconciliationOutcome":
        """Outcome mirroring the stored payment. Expects ``payment.ticket`` loaded unless ``bus_id`` is given."""
        kind = {
            PaymentStatus.COMPLETED: OutcomeKind.COMPLETED,
            PaymentStatus.FAILED: OutcomeKind.FAILED,
            PaymentStatus.CANCELLED: OutcomeKind.CANCELLED,
            PaymentStatus.PENDING: OutcomeKind.STILL_PENDING,
        }[payment.status]
        return cls(
            kind=kind,
            reference=payment.reference,
            payment_id=payment.id,
            ticket_id=payment.ticket_id,
            reason=payment.failure_reason,
            applied=applied,
            bus_id=bus_id or payment.ticket.bus_id,
        )


class PaymentReconciler:
    """Applies normalized gateway statuses to the ticket and payment ledgers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: "TaskDispatcher",
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    async def apply_status(
        self,
        reference: str,
        status: NormalizedStatus,
        source: ReconciliationSource,
    ) -> ReconciliationOutcome:
        """
        Apply a normalized gateway status to the payment with this reference.

        Raises:
            PaymentNotFoundError: No payment carries the reference
            ReconciliationError: The ledger could not be written; safe to retry
        """
        try:
            try:
                outcome = await self._apply(reference, status)
            except SeatExhaustedError:
                outcome = await self._fail_after_rollback(reference, FailureReason.SEAT_EXHAUSTED)
            except IntegrityError:
                # Another ticket completed the same seat concurrently
                outcome = await self._fail_after_rollback(reference, FailureReason.SEAT_LOST)
        except SQLAlchemyError as e:
            logger.error(
                f"Ledger write failed while reconciling {reference} from {source.value}: {e}",
                exc_info=e,
            )
            raise ReconciliationError(reference) from e

        if outcome.applied:
            await self._after_commit(outcome, source)
        else:
            logger.debug(f"Status {status.value} for {reference} from {source.value}: no change ({outcome.kind.value})")

        return outcome

    async def _apply(self, reference: str, status: NormalizedStatus) -> ReconciliationOutcome:
        async with self.session_factory() as session:
            async with session.begin():
                payment = await PaymentLedger(session).get_by_reference(reference, for_update=True)
                if payment is None:
                    raise PaymentNotFoundError(reference)

                if payment.is_terminal or not status.is_terminal:
                    return ReconciliationOutcome.from_payment(payment)

                if status == NormalizedStatus.PAID:
                    return await self._complete(session, payment)

                if status == NormalizedStatus.CANCELLED:
                    return await self._close(session, payment, PaymentStatus.CANCELLED, TicketStatus.CANCELLED)

                return await self._close(
                    session, payment, PaymentStatus.FAILED, TicketStatus.FAILED, FailureReason.GATEWAY_FAILED
                )

    async def _complete(self, session: AsyncSession, payment: Payment) -> ReconciliationOutcome:
        ticket = payment.ticket
        inventory = SeatInventory(session)

        if not await inventory.check_seat_free(ticket.bus_id, ticket.seat_number, exclude_ticket_id=ticket.id):
            logger.warning(f"Seat {ticket.seat_number} on bus {ticket.bus_id} already sold; failing {payment.reference}")
            return await self._close(
                session, payment, PaymentStatus.FAILED, TicketStatus.FAILED, FailureReason.SEAT_LOST
            )

        if not await PaymentLedger(session).transition(payment.id, PaymentStatus.COMPLETED):
            return await self._stored_outcome(session, payment)

        await TicketLedger(session).transition(
            ticket.id,
            TicketStatus.COMPLETED,
            from_statuses=(TicketStatus.PENDING, TicketStatus.FAILED, TicketStatus.CANCELLED),
            payment_method=payment.payment_method,
            gateway_reference=payment.reference,
        )
        await inventory.commit_seat(ticket.bus_id)

        return ReconciliationOutcome(
            kind=OutcomeKind.COMPLETED,
            reference=payment.reference,
            payment_id=payment.id,
            ticket_id=ticket.id,
            applied=True,
            bus_id=ticket.bus_id,
        )

    async def _close(
        self,
        session: AsyncSession,
        payment: Payment,
        payment_status: PaymentStatus,
        ticket_status: TicketStatus,
        reason: Optional[FailureReason] = None,
    ) -> ReconciliationOutcome:
        if not await PaymentLedger(session).transition(payment.id, payment_status, reason):
            return await self._stored_outcome(session, payment)

        await TicketLedger(session).transition(payment.ticket_id, ticket_status)

        return ReconciliationOutcome(
            kind=OutcomeKind.FAILED if payment_status == PaymentStatus.FAILED else OutcomeKind.CANCELLED,
            reference=payment.reference,
            payment_id=payment.id,
            ticket_id=payment.ticket_id,
            reason=reason,
            applied=True,
            bus_id=payment.ticket.bus_id,
        )

    async def _stored_outcome(self, session: AsyncSession, payment: Payment) -> ReconciliationOutcome:
        bus_id = payment.ticket.bus_id
        await session.refresh(payment)
        return ReconciliationOutcome.from_payment(payment, bus_id=bus_id)

    async def _fail_after_rollback(self, reference: str, reason: FailureReason) -> ReconciliationOutcome:
        """Settle the payment as FAILED in a fresh transaction after the completion rolled back."""
        async with self.session_factory() as session:
            async with session.begin():
                payment = await PaymentLedger(session).get_by_reference(reference, for_update=True)
                if payment is None:
                    raise PaymentNotFoundError(reference)
                if payment.is_terminal:
                    return ReconciliationOutcome.from_payment(payment)
                return await self._close(session, payment, PaymentStatus.FAILED, TicketStatus.FAILED, reason)

    async def _after_commit(self, outcome: ReconciliationOutcome, source: ReconciliationSource) -> None:
        log_business_event(
            "payment_reconciled",
            {
                "reference": outcome.reference,
                "outcome": outcome.kind.value,
                "reason": outcome.reason.value if outcome.reason else None,
                "source": source.value,
            },
        )

        if outcome.reason == FailureReason.SEAT_LOST:
            log_business_event("seat_lost", {"reference": outcome.reference, "ticket_id": str(outcome.ticket_id)})

        if outcome.kind != OutcomeKind.COMPLETED:
            return

        try:
            self.dispatcher.dispatch_payment_confirmation(outcome.payment_id, outcome.ticket_id)
        except Exception as e:
            # The payment stands even if the emails cannot be queued
            logger.error(f"Could not queue confirmation emails for {outcome.reference}: {e}", exc_info=e)

        await CacheInvalidator.invalidate_seat_caches(str(outcome.bus_id))
