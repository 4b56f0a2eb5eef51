"""
Seat inventory: per-bus seat accounting.

Seats are never reserved when a ticket is booked. A seat is claimed only
when a payment settles, by re-checking that no completed ticket holds it
and then decrementing the bus counter with a single compare-and-decrement
statement.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.bus import Bus
from ..models.ticket import Ticket, TicketStatus
from ..utils.exceptions import SeatExhaustedError

logger = logging.getLogger(__name__)


class SeatInventory:
    """Seat accounting bound to the caller's session and transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def check_seat_free(
        self,
        bus_id: UUID,
        seat_number: int,
        exclude_ticket_id: Optional[UUID] = None
    ) -> bool:
        """True unless a completed ticket already occupies the seat."""
        conditions = [
            Ticket.bus_id == bus_id,
            Ticket.seat_number == seat_number,
            Ticket.status == TicketStatus.COMPLETED,
        ]
        if exclude_ticket_id is not None:
            conditions.append(Ticket.id != exclude_ticket_id)

        result = await self.session.execute(
            select(Ticket.id).where(and_(*conditions)).limit(1)
        )
        return result.scalar_one_or_none() is None

    async def commit_seat(self, bus_id: UUID) -> None:
        """
        Take one seat off the bus counter.

        Raises:
            SeatExhaustedError: When the counter is already at zero
        """
        result = await self.session.execute(
            update(Bus)
            .where(and_(Bus.id == bus_id, Bus.available_seats > 0))
            .values(
                available_seats=Bus.available_seats - 1,
                version=Bus.version + 1
            )
        )

        if result.rowcount == 0:
            logger.warning(f"No seats left to commit on bus {bus_id}")
            raise SeatExhaustedError(str(bus_id))

        logger.debug(f"Committed one seat on bus {bus_id}")

    async def occupied_seats(self, bus_id: UUID) -> List[int]:
        """Seat numbers held by completed tickets, ascending."""
        result = await self.session.execute(
            select(Ticket.seat_number)
            .where(and_(Ticket.bus_id == bus_id, Ticket.status == TicketStatus.COMPLETED))
            .order_by(Ticket.seat_number)
        )
        return list(result.scalars().all())
