"""
Tests for BusService
"""

from datetime import timedelta, timezone
from uuid import uuid4

import pytest

from bus_booking_platform.cache import RedisCache
from bus_booking_platform.models.ticket import TicketStatus
from bus_booking_platform.services.bus_service import BusService
from bus_booking_platform.utils.exceptions import BusNotFoundError
from tests.conftest import create_bus, create_ticket


@pytest.mark.unit
class TestBusCatalog:

    async def test_list_buses__returns_every_bus(self, session_factory, bus):
        full_bus = await create_bus(session_factory, total_seats=28, available_seats=0, route='Bulawayo to Victoria Falls')

        async with session_factory() as session:
            buses = await BusService(session, cache=RedisCache()).list_buses()

        assert {b.id for b in buses} == {bus.id, full_bus.id}

    async def test_available__skips_full_buses_and_other_routes(self, session_factory, bus):
        # Arrange
        await create_bus(session_factory, total_seats=40, available_seats=0)
        await create_bus(session_factory, total_seats=35, price='25.00', route='Harare to Mutare')

        # Act
        async with session_factory() as session:
            buses = await BusService(session, cache=RedisCache()).list_buses(
                route='Harare to Bulawayo', available_only=True
            )

        # Assert
        assert [b.id for b in buses] == [bus.id]

    async def test_available__filters_by_departure_day(self, session_factory, bus):
        departure_day = bus.departure_time.astimezone(timezone.utc).date()

        async with session_factory() as session:
            service = BusService(session, cache=RedisCache())
            same_day = await service.list_buses(travel_date=departure_day, available_only=True)
            next_day = await service.list_buses(travel_date=departure_day + timedelta(days=1), available_only=True)

        assert [b.id for b in same_day] == [bus.id]
        assert next_day == []

    async def test_get_bus__exposes_route_endpoints(self, session_factory, bus):
        async with session_factory() as session:
            found = await BusService(session, cache=RedisCache()).get_bus(bus.id)

        assert found.origin == 'Harare'
        assert found.destination == 'Bulawayo'

    async def test_unknown_bus__raises_not_found(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(BusNotFoundError):
                await BusService(session, cache=RedisCache()).get_bus(uuid4())

    async def test_occupied_seats__lists_completed_seats_only(self, session_factory, user, other_user, bus):
        await create_ticket(session_factory, bus, user, seat_number=14, status=TicketStatus.COMPLETED)
        await create_ticket(session_factory, bus, other_user, seat_number=3, status=TicketStatus.COMPLETED)
        await create_ticket(session_factory, bus, other_user, seat_number=30)

        async with session_factory() as session:
            summary = await BusService(session, cache=RedisCache()).occupied_seats(bus.id)

        assert summary['occupied_seats'] == [3, 14]
        assert summary['total_seats'] == 40
        assert summary['bus_id'] == str(bus.id)
