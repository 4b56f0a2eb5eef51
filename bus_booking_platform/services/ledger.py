"""
Ticket and payment ledgers.

Explicit loaders for the aggregates the payment flow works on, and
compare-and-set status transitions. A transition only succeeds from the
expected source status, so two concurrent writers can never both move a
record out of PENDING.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, delete, desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from ..models.bus import Bus
from ..models.payment import FailureReason, Payment, PaymentStatus
from ..models.ticket import Ticket, TicketStatus

logger = logging.getLogger(__name__)


class TicketLedger:
    """Persistence operations for tickets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, ticket_id: UUID) -> Optional[Ticket]:
        """Load a ticket together with its bus."""
        result = await self.session.execute(
            select(Ticket)
            .options(joinedload(Ticket.bus, innerjoin=True))
            .where(Ticket.id == ticket_id)
        )
        return result.scalar_one_or_none()

    async def get_for_owner(self, ticket_id: UUID, user_id: UUID) -> Optional[Ticket]:
        result = await self.session.execute(
            select(Ticket)
            .options(joinedload(Ticket.bus, innerjoin=True))
            .where(and_(Ticket.id == ticket_id, Ticket.user_id == user_id))
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: UUID) -> List[Ticket]:
        result = await self.session.execute(
            select(Ticket)
            .options(joinedload(Ticket.bus, innerjoin=True))
            .where(Ticket.user_id == user_id)
            .order_by(desc(Ticket.created_at))
        )
        return list(result.scalars().all())

    async def add(self, ticket: Ticket) -> Ticket:
        self.session.add(ticket)
        await self.session.flush()
        return ticket

    async def transition(
        self,
        ticket_id: UUID,
        to_status: TicketStatus,
        from_statuses: Iterable[TicketStatus] = (TicketStatus.PENDING,),
        **values
    ) -> bool:
        """Move a ticket to ``to_status`` if it is currently in one of ``from_statuses``."""
        result = await self.session.execute(
            update(Ticket)
            .where(and_(Ticket.id == ticket_id, Ticket.status.in_(list(from_statuses))))
            .values(status=to_status, **values)
        )
        return result.rowcount == 1


class PaymentLedger:
    """Persistence operations for payments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_reference(self, reference: str, for_update: bool = False) -> Optional[Payment]:
        """
        Load a payment with its ticket and the ticket's bus.

        With ``for_update`` the payment row is locked until the end of the
        transaction on backends that support row locks.
        """
        stmt = (
            select(Payment)
            .options(
                joinedload(Payment.ticket, innerjoin=True)
                .joinedload(Ticket.bus, innerjoin=True)
            )
            .where(Payment.reference == reference)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Payment)

        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending_for_ticket(self, ticket_id: UUID) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(and_(Payment.ticket_id == ticket_id, Payment.status == PaymentStatus.PENDING))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history_for_user(self, user_id: UUID, limit: int = 50) -> List[Payment]:
        result = await self.session.execute(
            select(Payment)
            .options(
                joinedload(Payment.ticket, innerjoin=True)
                .joinedload(Ticket.bus, innerjoin=True)
            )
            .where(Payment.user_id == user_id)
            .order_by(desc(Payment.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def add(self, payment: Payment) -> Payment:
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def record_prompt(self, payment_id: UUID, **values) -> None:
        """Store what the gateway returned for the mobile prompt."""
        await self.session.execute(update(Payment).where(Payment.id == payment_id).values(**values))

    async def release_claim(self, payment_id: UUID) -> bool:
        """
        Delete a PENDING payment the payer was never prompted for.

        Returns False when the row is gone or was already settled.
        """
        result = await self.session.execute(
            delete(Payment).where(and_(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.PENDING,
                Payment.poll_handle.is_(None),
            ))
        )
        return result.rowcount == 1

    async def transition(
        self,
        payment_id: UUID,
        to_status: PaymentStatus,
        failure_reason: Optional[FailureReason] = None
    ) -> bool:
        """
        Move a PENDING payment to a terminal status.

        Returns False when another writer already settled it.
        """
        values = {"status": to_status, "failure_reason": failure_reason}
        if to_status == PaymentStatus.COMPLETED:
            values["completed_at"] = datetime.now(timezone.utc)

        result = await self.session.execute(
            update(Payment)
            .where(and_(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING))
            .values(**values)
        )
        settled = result.rowcount == 1
        if not settled:
            logger.debug(f"Payment {payment_id} was already settled; skipped transition to {to_status.name}")
        return settled


async def load_bus(session: AsyncSession, bus_id: UUID) -> Optional[Bus]:
    result = await session.execute(select(Bus).where(Bus.id == bus_id))
    return result.scalar_one_or_none()


def ticket_amount(bus: Bus) -> Decimal:
    return Decimal(bus.price).quantize(Decimal("0.01"))
