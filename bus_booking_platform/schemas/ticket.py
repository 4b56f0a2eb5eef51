"""
Pydantic schemas for ticket-related API requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from ..models.ticket import TicketStatus
from ..utils.references import is_valid_mobile_number, normalize_mobile_number


class TicketCreateRequest(BaseModel):
    """Schema for booking a seat."""

    bus_id: UUID = Field(..., description="ID of the bus to travel on")
    seat_number: int = Field(..., ge=1, description="Seat number on the bus")
    passenger_name: Optional[str] = Field(None, min_length=1, max_length=200)
    passenger_email: Optional[str] = Field(None, max_length=255)
    passenger_phone: Optional[str] = Field(None, max_length=20)

    @field_validator('passenger_phone')
    @classmethod
    def validate_phone(cls, v):
        if v is None:
            return v
        if not is_valid_mobile_number(v):
            raise ValueError("Please provide a valid Zimbabwean phone number")
        return normalize_mobile_number(v)


class BusSummary(BaseModel):
    id: UUID
    fleet_number: str
    bus_type: str
    route: str
    departure_time: datetime
    arrival_time: datetime

    model_config = {"from_attributes": True}


class TicketResponse(BaseModel):
    """Schema for ticket responses."""

    id: UUID
    ticket_number: str
    bus_id: UUID
    user_id: UUID
    seat_number: int
    passenger_name: str
    passenger_email: Optional[str]
    passenger_phone: Optional[str]
    departure: str
    destination: str
    travel_date: datetime
    amount: Decimal
    status: TicketStatus
    payment_method: Optional[str]
    gateway_reference: Optional[str]
    created_at: datetime

    bus: Optional[BusSummary] = None

    model_config = {"from_attributes": True}


class TicketListResponse(BaseModel):
    tickets: List[TicketResponse]
    total: int

