"""
Bus catalog API endpoints.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..schemas.bus import BusListResponse, BusResponse, OccupiedSeatsResponse
from ..schemas.common import ErrorResponse
from ..services.bus_service import BusService
from ..utils.dependencies import get_bus_service

router = APIRouter(prefix="/buses", tags=["buses"])


def _bus_list(buses) -> BusListResponse:
    return BusListResponse(
        buses=[BusResponse.model_validate(bus) for bus in buses],
        total=len(buses),
    )


@router.get("", response_model=BusListResponse)
async def list_buses(bus_service: BusService = Depends(get_bus_service)):
    """All scheduled buses, earliest departure first."""
    return _bus_list(await bus_service.list_buses())


@router.get("/available", response_model=BusListResponse)
async def list_available_buses(
    route: Optional[str] = Query(None, description="Route, e.g. 'Harare to Bulawayo'"),
    travel_date: Optional[date] = Query(None, alias="date", description="Departure date (YYYY-MM-DD)"),
    bus_service: BusService = Depends(get_bus_service),
):
    """Buses that still have seats, optionally on one route and day."""
    buses = await bus_service.list_buses(route=route, travel_date=travel_date, available_only=True)
    return _bus_list(buses)


@router.get(
    "/{bus_id}",
    response_model=BusResponse,
    responses={404: {"model": ErrorResponse, "description": "Bus not found"}},
)
async def get_bus(bus_id: UUID, bus_service: BusService = Depends(get_bus_service)):
    return BusResponse.model_validate(await bus_service.get_bus(bus_id))


@router.get(
    "/{bus_id}/occupied-seats",
    response_model=OccupiedSeatsResponse,
    responses={404: {"model": ErrorResponse, "description": "Bus not found"}},
)
async def get_occupied_seats(bus_id: UUID, bus_service: BusService = Depends(get_bus_service)):
    """Seats already sold on a bus."""
    return OccupiedSeatsResponse(**await bus_service.occupied_seats(bus_id))
