"""Business logic services for the Bus Booking Platform."""

from .bus_service import BusService
from .payment_service import PaymentService
from .ticket_service import TicketService
from .reconciler import PaymentReconciler
from .polling_supervisor import PollingSupervisor
from .webhook_receiver import WebhookReceiver

__all__ = ["BusService", "PaymentService", "TicketService", "PaymentReconciler", "PollingSupervisor", "WebhookReceiver"]
