"""
Celery tasks for confirmation emails.
"""

import logging
from uuid import UUID

from .base import DatabaseTask
from .celery_app import celery_app
from ..services.notification_service import NotificationService
from ..utils.exceptions import EmailServiceError

logger = logging.getLogger(__name__)

EMAIL_RETRY_OPTIONS = {
    "autoretry_for": (EmailServiceError,),
    "retry_backoff": True,
    "retry_backoff_max": 600,
    "retry_jitter": True,
    "max_retries": 5,
}


@celery_app.task(bind=True, base=DatabaseTask, name="send_ticket_confirmation_task", **EMAIL_RETRY_OPTIONS)
def send_ticket_confirmation_task(self, ticket_id: str):
    """
    Task to email the ticket to the passenger.

    Args:
        ticket_id: ID of the completed ticket
    """
    async def _send(session_factory):
        async with session_factory() as session:
            sent = await NotificationService(session).send_ticket_confirmation(UUID(ticket_id))
        return {"ticket_id": ticket_id, "status": "sent" if sent else "skipped"}

    logger.info(f"Sending ticket confirmation for {ticket_id}")
    return self.run_async(_send)


@celery_app.task(bind=True, base=DatabaseTask, name="send_payment_confirmation_task", **EMAIL_RETRY_OPTIONS)
def send_payment_confirmation_task(self, payment_id: str):
    """
    Task to email the payment receipt.

    Args:
        payment_id: ID of the completed payment
    """
    async def _send(session_factory):
        async with session_factory() as session:
            sent = await NotificationService(session).send_payment_confirmation(UUID(payment_id))
        return {"payment_id": payment_id, "status": "sent" if sent else "skipped"}

    logger.info(f"Sending payment confirmation for {payment_id}")
    return self.run_async(_send)
