#!/usr/bin/env python3
"""
Script to load the sample bus fleet and a demo passenger for local development.
"""

import asyncio
import os
import sys
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from bus_booking_platform.database import close_database, get_db_session, init_database
from bus_booking_platform.models.bus import Bus
from bus_booking_platform.models.user import User
from bus_booking_platform.utils.auth import create_access_token

# fleet number, type, seats, route, departure, duration, price
FLEET = [
    ("BUS001", "Luxury Coach", 40, "Harare to Bulawayo", time(8, 0), timedelta(hours=6), Decimal("35.00")),
    ("BUS002", "Standard", 35, "Harare to Mutare", time(9, 0), timedelta(hours=3, minutes=30), Decimal("25.00")),
    ("BUS003", "Executive", 28, "Bulawayo to Victoria Falls", time(7, 30), timedelta(hours=5, minutes=30), Decimal("45.00")),
]

DEMO_EMAIL = "passenger@example.co.zw"


async def seed_buses():
    """Insert tomorrow's departures for each fleet bus that is not scheduled yet."""
    print("🚌 Bus Booking Platform - Fleet Seeder")
    print("=" * 40)

    tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).date()

    async with get_db_session() as db:
        for fleet_number, bus_type, seats, route, departs_at, duration, price in FLEET:
            departure = datetime.combine(tomorrow, departs_at, tzinfo=timezone.utc)

            result = await db.execute(
                select(Bus).where(Bus.fleet_number == fleet_number, Bus.departure_time == departure)
            )
            if result.scalar_one_or_none():
                print(f"⏭️  {fleet_number} already scheduled for {departure:%Y-%m-%d %H:%M}")
                continue

            db.add(Bus(
                fleet_number=fleet_number,
                bus_type=bus_type,
                route=route,
                departure_time=departure,
                arrival_time=departure + duration,
                total_seats=seats,
                available_seats=seats,
                price=price,
            ))
            print(f"✅ {fleet_number} {route} at {departure:%Y-%m-%d %H:%M} (${price})")


async def seed_demo_user():
    """Create the demo passenger and print a bearer token for it."""
    async with get_db_session() as db:
        result = await db.execute(select(User).where(User.email == DEMO_EMAIL))
        user = result.scalar_one_or_none()

        if user is None:
            user = User(
                email=DEMO_EMAIL,
                first_name="Demo",
                last_name="Passenger",
                phone="+263771234567",
                is_active=True,
            )
            db.add(user)
            await db.flush()
            print(f"✅ Demo passenger created: {user.email}")

        token = create_access_token({"sub": str(user.id), "email": user.email}, timedelta(days=7))

    print()
    print(f"🔑 Bearer token for {DEMO_EMAIL}:")
    print(token)


async def main():
    """Main function."""
    try:
        await init_database()
        await seed_buses()
        if len(sys.argv) > 1 and sys.argv[1] == "--with-user":
            await seed_demo_user()
    except Exception as e:
        print(f"❌ Error seeding data: {e}")
        sys.exit(1)
    finally:
        await close_database()


if __name__ == "__main__":
    print("Usage:")
    print("  python seed_buses.py              # Schedule the sample fleet for tomorrow")
    print("  python seed_buses.py --with-user  # Also create a demo passenger and print a token")
    print()

    asyncio.run(main())
