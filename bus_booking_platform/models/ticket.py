"""
Ticket model: a passenger's claim on one seat of one bus.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .bus import Bus
    from .payment import Payment
    from .user import User


class TicketStatus(enum.Enum):
    """Enumeration for ticket status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Ticket(Base):
    """Ticket for a seat on a bus.

    Two pending tickets may name the same seat; only one of them can ever
    reach COMPLETED (see ``uq_tickets_completed_seat``).
    """

    __tablename__ = "tickets"

    ticket_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)

    bus_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("buses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    seat_number: Mapped[int] = mapped_column(Integer, nullable=False)

    passenger_name: Mapped[str] = mapped_column(String(200), nullable=False)
    passenger_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    passenger_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    departure: Mapped[str] = mapped_column(String(100), nullable=False)
    destination: Mapped[str] = mapped_column(String(100), nullable=False)
    travel_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus),
        default=TicketStatus.PENDING,
        nullable=False,
        index=True
    )

    payment_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    gateway_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    bus: Mapped["Bus"] = relationship("Bus", back_populates="tickets")
    user: Mapped["User"] = relationship("User", back_populates="tickets")
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="ticket",
        order_by="Payment.created_at"
    )

    __table_args__ = (
        CheckConstraint("seat_number > 0", name="ck_tickets_seat_number_positive"),
        CheckConstraint("amount >= 0", name="ck_tickets_amount_non_negative"),
        Index(
            "uq_tickets_completed_seat",
            "bus_id",
            "seat_number",
            unique=True,
            postgresql_where=text("status = 'COMPLETED'"),
            sqlite_where=text("status = 'COMPLETED'"),
        ),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == TicketStatus.COMPLETED

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, number={self.ticket_number}, seat={self.seat_number}, status={self.status.value})>"
