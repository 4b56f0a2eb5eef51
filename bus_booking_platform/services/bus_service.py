"""
Bus catalog: scheduled buses and their seat maps.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheKeyBuilder, CacheTTL, RedisCache, get_cache
from ..models.bus import Bus
from ..utils.exceptions import BusNotFoundError
from .ledger import load_bus
from .seat_inventory import SeatInventory

logger = logging.getLogger(__name__)


class BusService:
    """Read-only access to buses for passengers choosing a seat."""

    def __init__(self, session: AsyncSession, cache: Optional[RedisCache] = None):
        self.session = session
        self.cache = cache or get_cache()

    async def list_buses(
        self,
        route: Optional[str] = None,
        travel_date: Optional[date] = None,
        available_only: bool = False,
    ) -> List[Bus]:
        """
        Buses ordered by departure.

        Args:
            route: Exact route name, e.g. "Harare to Bulawayo"
            travel_date: Only buses departing on this (UTC) day
            available_only: Skip buses with no seats left
        """
        conditions = []
        if route:
            conditions.append(Bus.route == route)
        if travel_date is not None:
            day_start = datetime.combine(travel_date, time.min, tzinfo=timezone.utc)
            conditions.append(Bus.departure_time >= day_start)
            conditions.append(Bus.departure_time < day_start + timedelta(days=1))
        if available_only:
            conditions.append(Bus.available_seats > 0)

        stmt = select(Bus).order_by(Bus.departure_time)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_bus(self, bus_id: UUID) -> Bus:
        """
        Raises:
            BusNotFoundError: Unknown bus
        """
        bus = await load_bus(self.session, bus_id)
        if bus is None:
            raise BusNotFoundError(str(bus_id))
        return bus

    async def occupied_seats(self, bus_id: UUID) -> Dict:
        """Seat map summary for a bus, cached briefly."""
        cache_key = CacheKeyBuilder.occupied_seats(str(bus_id))
        cached = await self.cache.get(cache_key)
        if cached:
            return cached

        bus = await self.get_bus(bus_id)
        seats = await SeatInventory(self.session).occupied_seats(bus_id)
        summary = {
            "bus_id": str(bus.id),
            "total_seats": bus.total_seats,
            "available_seats": bus.available_seats,
            "occupied_seats": seats,
        }
        await self.cache.set(cache_key, summary, ttl=CacheTTL.OCCUPIED_SEATS)
        return summary
