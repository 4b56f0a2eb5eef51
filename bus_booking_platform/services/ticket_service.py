"""
Ticket service for booking seats and reading tickets back.
"""

import logging
from typing import List
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.ticket import Ticket, TicketStatus
from ..models.user import User
from ..schemas.ticket import TicketCreateRequest
from ..utils.exceptions import (
    BusNotFoundError,
    SeatExhaustedError,
    SeatTakenError,
    TicketNotFoundError,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.references import generate_ticket_number
from .ledger import TicketLedger, load_bus, ticket_amount
from .seat_inventory import SeatInventory

logger = logging.getLogger(__name__)


class TicketService:
    """
    Books seats as PENDING tickets.

    Booking does not hold the seat; it only rules out seats that are
    already sold. The seat is claimed when a payment for the ticket settles.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_ticket(self, user: User, request: TicketCreateRequest) -> Ticket:
        """
        Create a PENDING ticket for a seat on a bus.

        Raises:
            BusNotFoundError: Unknown bus
            ValidationError: Seat number outside the bus layout
            SeatExhaustedError: The bus is fully booked
            SeatTakenError: A completed ticket already holds the seat
        """
        bus = await load_bus(self.session, request.bus_id)
        if bus is None:
            raise BusNotFoundError(str(request.bus_id))

        if request.seat_number > bus.total_seats:
            raise ValidationError(
                f"Seat {request.seat_number} does not exist on bus {bus.fleet_number}",
                field_errors={"seat_number": [f"must be between 1 and {bus.total_seats}"]},
            )

        if bus.is_full:
            raise SeatExhaustedError(str(bus.id))

        inventory = SeatInventory(self.session)
        if not await inventory.check_seat_free(bus.id, request.seat_number):
            raise SeatTakenError(str(bus.id), request.seat_number)

        ticket = Ticket(
            ticket_number=generate_ticket_number(),
            bus_id=bus.id,
            user_id=user.id,
            seat_number=request.seat_number,
            passenger_name=request.passenger_name or user.full_name,
            passenger_email=request.passenger_email or user.email,
            passenger_phone=request.passenger_phone or user.phone,
            departure=bus.origin,
            destination=bus.destination,
            travel_date=bus.departure_time,
            amount=ticket_amount(bus),
            status=TicketStatus.PENDING,
        )
        ticket.bus = bus
        await TicketLedger(self.session).add(ticket)

        log_business_event(
            "ticket_created",
            {
                "ticket_number": ticket.ticket_number,
                "bus_id": str(bus.id),
                "seat_number": ticket.seat_number,
            },
            user_id=str(user.id),
        )
        return ticket

    async def list_tickets(self, user_id: UUID) -> List[Ticket]:
        return await TicketLedger(self.session).list_for_user(user_id)

    async def get_ticket(self, ticket_id: UUID, user_id: UUID) -> Ticket:
        """
        Raises:
            TicketNotFoundError: Unknown ticket or owned by someone else
        """
        ticket = await TicketLedger(self.session).get_for_owner(ticket_id, user_id)
        if ticket is None:
            raise TicketNotFoundError(str(ticket_id))
        return ticket

