"""
Database models for the bus booking platform.
"""

from .base import Base
from .user import User
from .bus import Bus
from .ticket import Ticket, TicketStatus
from .payment import Payment, PaymentStatus, FailureReason, TERMINAL_PAYMENT_STATUSES

__all__ = [
    "Base",
    "User",
    "Bus",
    "Ticket",
    "TicketStatus",
    "Payment",
    "PaymentStatus",
    "FailureReason",
    "TERMINAL_PAYMENT_STATUSES",
]
