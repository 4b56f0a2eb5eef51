"""
FastAPI routes for booking tickets and reading seat maps.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..models.user import User
from ..schemas.common import ErrorResponse
from ..schemas.ticket import (
    TicketCreateRequest,
    TicketListResponse,
    TicketResponse,
)
from ..services.ticket_service import TicketService
from ..utils.dependencies import get_current_user, get_ticket_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["tickets"])


@router.post(
    "/tickets",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse, "description": "Bus not found"},
        409: {"model": ErrorResponse, "description": "Seat already sold or bus full"},
    },
)
async def create_ticket(
    request: TicketCreateRequest,
    current_user: User = Depends(get_current_user),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    """
    Book a seat. The ticket stays PENDING until a payment for it settles;
    the seat is not held in the meantime.
    """
    ticket = await ticket_service.create_ticket(current_user, request)
    return TicketResponse.model_validate(ticket)


@router.get("/tickets", response_model=TicketListResponse)
async def list_tickets(
    current_user: User = Depends(get_current_user),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    tickets = await ticket_service.list_tickets(current_user.id)
    return TicketListResponse(
        tickets=[TicketResponse.model_validate(ticket) for ticket in tickets],
        total=len(tickets),
    )


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    ticket = await ticket_service.get_ticket(ticket_id, current_user.id)
    return TicketResponse.model_validate(ticket)

