"""
Payment model: one attempt to settle a ticket through the gateway.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Index, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .ticket import Ticket


class PaymentStatus(enum.Enum):
    """Enumeration for payment status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
})


class FailureReason(enum.Enum):
    """Why a payment ended in FAILED."""
    GATEWAY_FAILED = "gateway_failed"
    SEAT_LOST = "seat_lost"
    SEAT_EXHAUSTED = "seat_exhausted"


class Payment(Base):
    """A gateway payment attempt for a ticket.

    Terminal statuses are permanent. A ticket may carry several payments,
    but at most one of them is PENDING at a time.
    """

    __tablename__ = "payments"

    reference: Mapped[str] = mapped_column(String(60), unique=True, nullable=False, index=True)

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True
    )
    failure_reason: Mapped[Optional[FailureReason]] = mapped_column(Enum(FailureReason), nullable=True)

    poll_handle: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    gateway_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_gateway_trace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index(
            "uq_payments_one_pending_per_ticket",
            "ticket_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, reference={self.reference}, status={self.status.value})>"
