"""
Pydantic schemas for bus catalog responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List
from uuid import UUID

from pydantic import BaseModel


class BusResponse(BaseModel):
    """Schema for a scheduled bus."""

    id: UUID
    fleet_number: str
    bus_type: str
    route: str
    origin: str
    destination: str
    departure_time: datetime
    arrival_time: datetime
    total_seats: int
    available_seats: int
    price: Decimal

    model_config = {"from_attributes": True}


class BusListResponse(BaseModel):
    buses: List[BusResponse]
    total: int


class OccupiedSeatsResponse(BaseModel):
    bus_id: UUID
    total_seats: int
    available_seats: int
    occupied_seats: List[int]
