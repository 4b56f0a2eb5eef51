"""
Payment service: initiation, status checks and history.

Initiation validates and inserts the PENDING payment in one short
transaction, so a second initiation for the ticket is refused before its
payer is prompted. The gateway is called with no transaction open and its
answer is recorded in a second short transaction. Settlement is left to
the reconciler.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..cache import CacheKeyBuilder, RedisCache, get_cache
from ..config import Settings, get_settings
from ..models.payment import FailureReason, Payment, PaymentStatus
from ..models.ticket import TicketStatus
from ..schemas.ticket import TicketResponse
from ..tasks.dispatcher import TaskDispatcher
from ..utils.exceptions import (
    AlreadyPaidError,
    PaymentInProgressError,
    PaymentNotFoundError,
    SeatExhaustedError,
    SeatTakenError,
    TicketNotFoundError,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.references import (
    SUPPORTED_PAYMENT_METHODS,
    generate_payment_reference,
    is_valid_mobile_number,
    normalize_mobile_number,
)
from .ledger import PaymentLedger, TicketLedger
from .payment_gateway import NormalizedStatus, PaymentGatewayAdapter
from .polling_supervisor import PollingReport, PollingSupervisor
from .seat_inventory import SeatInventory

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    PaymentStatus.COMPLETED: "Payment successful",
    PaymentStatus.CANCELLED: "Payment cancelled",
    PaymentStatus.FAILED: "Payment failed",
}

FAILURE_MESSAGES = {
    FailureReason.SEAT_LOST: "Payment received but the seat was sold to another passenger",
    FailureReason.SEAT_EXHAUSTED: "Payment received but the bus is fully booked",
}

PENDING_MESSAGES = {
    NormalizedStatus.SENT: "Payment request sent - waiting for authorization",
    NormalizedStatus.TRANSIENT_ERROR: "Unable to check payment status, please try again later",
}


@dataclass(frozen=True)
class PaymentInitiation:
    reference: str
    payment_id: UUID
    ticket_id: UUID
    instructions: Optional[str]
    poll_url: Optional[str]


class PaymentService:
    """Service for starting payments and reporting their status."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGatewayAdapter,
        dispatcher: TaskDispatcher,
        supervisor: PollingSupervisor,
        cache: Optional[RedisCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.supervisor = supervisor
        self.cache = cache or get_cache()
        self.settings = settings or get_settings()

    async def initiate_payment(
        self,
        user_id: UUID,
        ticket_id: UUID,
        phone_number: str,
        payment_method: str = "ecocash",
    ) -> PaymentInitiation:
        """
        Start a mobile-money payment for a ticket the caller owns.

        Raises:
            ValidationError: Bad phone number or payment method
            TicketNotFoundError: Unknown ticket or not the caller's
            AlreadyPaidError: The ticket is already completed
            PaymentInProgressError: Another payment for the ticket is pending
            SeatTakenError: Someone else completed this seat meanwhile
            SeatExhaustedError: The bus is fully booked
            InvalidAmountError: The ticket amount is not positive
            GatewayRejectedError: The gateway refused the request
            GatewayUnavailableError: The gateway could not be reached
        """
        method = (payment_method or "").strip().lower()
        if method not in SUPPORTED_PAYMENT_METHODS:
            raise ValidationError(
                f"Unsupported payment method '{payment_method}'",
                field_errors={"payment_method": [f"must be one of {', '.join(SUPPORTED_PAYMENT_METHODS)}"]},
            )
        if not is_valid_mobile_number(phone_number):
            raise ValidationError(
                "Please provide a valid Zimbabwean phone number",
                field_errors={"phone_number": ["invalid mobile number"]},
            )

        reference = generate_payment_reference(ticket_id)
        normalized_phone = normalize_mobile_number(phone_number)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    ticket = await TicketLedger(session).get_for_owner(ticket_id, user_id)
                    if ticket is None:
                        raise TicketNotFoundError(str(ticket_id))
                    if ticket.status == TicketStatus.COMPLETED:
                        raise AlreadyPaidError(str(ticket_id))

                    pending = await PaymentLedger(session).get_pending_for_ticket(ticket.id)
                    if pending is not None:
                        raise PaymentInProgressError(str(ticket_id), pending.reference)

                    inventory = SeatInventory(session)
                    if not await inventory.check_seat_free(ticket.bus_id, ticket.seat_number, exclude_ticket_id=ticket.id):
                        raise SeatTakenError(str(ticket.bus_id), ticket.seat_number)
                    if ticket.bus.is_full:
                        raise SeatExhaustedError(str(ticket.bus_id))

                    handle = self.gateway.create_payment(
                        reference,
                        ticket.passenger_email or self.settings.default_payer_email,
                        ticket.amount,
                        f"Bus Ticket: {ticket.departure} to {ticket.destination}",
                    )

                    # The PENDING row claims the ticket before the payer is prompted
                    payment = await PaymentLedger(session).add(Payment(
                        reference=reference,
                        ticket_id=ticket_id,
                        user_id=user_id,
                        amount=handle.amount,
                        payment_method=method,
                        phone_number=normalized_phone,
                        status=PaymentStatus.PENDING,
                    ))
        except IntegrityError:
            existing = await self._pending_reference(ticket_id)
            logger.warning(f"Concurrent initiation for ticket {ticket_id}; {reference} discarded")
            raise PaymentInProgressError(str(ticket_id), existing or "")

        try:
            prompt = await self.gateway.send_mobile_prompt(handle, phone_number, method)
        except Exception:
            await self._release_claim(payment.id)
            raise

        async with self.session_factory() as session:
            async with session.begin():
                await PaymentLedger(session).record_prompt(
                    payment.id,
                    poll_handle=prompt.poll_handle,
                    gateway_reference=prompt.gateway_reference,
                    instructions=prompt.instructions,
                    raw_gateway_trace=prompt.trace(),
                )
                await TicketLedger(session).transition(
                    ticket_id,
                    TicketStatus.PENDING,
                    from_statuses=(TicketStatus.PENDING, TicketStatus.FAILED, TicketStatus.CANCELLED),
                    payment_method=method,
                    gateway_reference=reference,
                )

        log_business_event(
            "payment_initiated",
            {"reference": reference, "ticket_id": str(ticket_id), "payment_method": method},
            user_id=str(user_id),
        )

        try:
            self.dispatcher.schedule_polling(reference)
        except Exception as e:
            # Status checks and the webhook still settle the payment
            logger.error(f"Could not schedule background polling for {reference}: {e}")

        return PaymentInitiation(
            reference=reference,
            payment_id=payment.id,
            ticket_id=ticket_id,
            instructions=prompt.instructions,
            poll_url=prompt.poll_handle,
        )

    async def get_payment_status(self, reference: str) -> Dict[str, Any]:
        """
        Report a payment's status, polling the gateway once if it is still pending.

        Raises:
            PaymentNotFoundError: No payment carries the reference
        """
        cache_key = CacheKeyBuilder.payment_status(reference)
        cached = await self.cache.get(cache_key)
        if cached:
            return cached

        payment = await self._load(reference)

        if payment.is_terminal:
            view = await self._terminal_view(reference, fresh=False)
        elif not payment.poll_handle:
            view = self._pending_view(reference, "Waiting for payment confirmation")
        else:
            attempt = await self.supervisor.poll_once(reference, poll_handle=payment.poll_handle)
            if attempt.outcome is not None and attempt.outcome.is_terminal:
                view = await self._terminal_view(reference, fresh=attempt.outcome.applied)
            else:
                message = PENDING_MESSAGES.get(attempt.gateway_status, "Payment still pending")
                view = self._pending_view(reference, message)
            view["gateway_status"] = attempt.gateway_status.value

        if view["status"] != PaymentStatus.PENDING.value:
            await self.cache.set(cache_key, view, ttl=self.settings.payment_status_cache_ttl)

        return view

    async def await_payment(self, reference: str) -> PollingReport:
        """Run the full polling loop for a payment."""
        report = await self.supervisor.run(reference)
        await self.cache.delete(CacheKeyBuilder.payment_status(reference))
        return report

    async def current_status(self, reference: str) -> PaymentStatus:
        return (await self._load(reference)).status

    async def get_payment_history(self, user_id: UUID) -> List[Payment]:
        async with self.session_factory() as session:
            async with session.begin():
                return await PaymentLedger(session).history_for_user(user_id)

    async def _load(self, reference: str) -> Payment:
        async with self.session_factory() as session:
            async with session.begin():
                payment = await PaymentLedger(session).get_by_reference(reference)
        if payment is None:
            raise PaymentNotFoundError(reference)
        return payment

    async def _release_claim(self, payment_id: UUID) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await PaymentLedger(session).release_claim(payment_id)
        except SQLAlchemyError as e:
            # Left PENDING without a poll handle; the stale payment sweep fails it
            logger.error(f"Could not release payment claim {payment_id}: {e}", exc_info=e)

    async def _pending_reference(self, ticket_id: UUID) -> Optional[str]:
        async with self.session_factory() as session:
            async with session.begin():
                pending = await PaymentLedger(session).get_pending_for_ticket(ticket_id)
                return pending.reference if pending else None

    def _pending_view(self, reference: str, message: str) -> Dict[str, Any]:
        return {
            "status": PaymentStatus.PENDING.value,
            "success": False,
            "message": message,
            "reference": reference,
        }

    async def _terminal_view(self, reference: str, fresh: bool) -> Dict[str, Any]:
        payment = await self._load(reference)

        if payment.status == PaymentStatus.COMPLETED:
            message = STATUS_MESSAGES[payment.status] if fresh else "Payment already completed"
        elif payment.failure_reason in FAILURE_MESSAGES:
            message = FAILURE_MESSAGES[payment.failure_reason]
        elif fresh:
            message = STATUS_MESSAGES[payment.status]
        else:
            message = f"Payment has been {payment.status.value}"

        view: Dict[str, Any] = {
            "status": payment.status.value,
            "success": payment.status == PaymentStatus.COMPLETED,
            "message": message,
            "reference": reference,
            "reason": payment.failure_reason.value if payment.failure_reason else None,
        }
        if payment.status == PaymentStatus.COMPLETED:
            view["ticket"] = TicketResponse.model_validate(payment.ticket).model_dump(mode="json")
        return view
