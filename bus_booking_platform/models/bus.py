"""
Bus model: one scheduled trip with a fixed seat count.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .ticket import Ticket

ROUTE_SEPARATOR = " to "


class Bus(Base):
    """A bus departure whose seats are sold as tickets.

    ``available_seats`` is a maintained counter; it only ever moves through
    the seat inventory's compare-and-decrement statement.
    """

    __tablename__ = "buses"

    fleet_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    bus_type: Mapped[str] = mapped_column(String(50), nullable=False)
    route: Mapped[str] = mapped_column(String(200), nullable=False)
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    arrival_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    available_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    tickets: Mapped[List["Ticket"]] = relationship("Ticket", back_populates="bus")

    __table_args__ = (
        CheckConstraint("total_seats > 0", name="ck_buses_total_seats_positive"),
        CheckConstraint("available_seats >= 0", name="ck_buses_available_seats_non_negative"),
        CheckConstraint("available_seats <= total_seats", name="ck_buses_seat_consistency"),
        CheckConstraint("price >= 0", name="ck_buses_price_non_negative"),
        CheckConstraint("version > 0", name="ck_buses_version_positive"),
    )

    @property
    def origin(self) -> str:
        return self.route.split(ROUTE_SEPARATOR, 1)[0].strip()

    @property
    def destination(self) -> str:
        parts = self.route.split(ROUTE_SEPARATOR, 1)
        return parts[1].strip() if len(parts) > 1 else ""

    @property
    def is_full(self) -> bool:
        return self.available_seats <= 0

    def __repr__(self) -> str:
        return f"<Bus(id={self.id}, fleet_number={self.fleet_number}, available={self.available_seats})>"
