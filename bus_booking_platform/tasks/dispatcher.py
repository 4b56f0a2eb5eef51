"""
Hand-off from request and reconciliation code to background tasks.
"""

import logging
from typing import Protocol
from uuid import UUID

from ..config import get_settings
from .celery_app import celery_app

logger = logging.getLogger(__name__)


class TaskDispatcher(Protocol):
    """Queues background work; must not block on the work itself."""

    def dispatch_payment_confirmation(self, payment_id: UUID, ticket_id: UUID) -> None: ...

    def schedule_polling(self, reference: str) -> None: ...


class CeleryTaskDispatcher:
    """Queues tasks on the Celery broker by task name."""

    def __init__(self, enable_background_polling: bool | None = None):
        if enable_background_polling is None:
            enable_background_polling = get_settings().enable_background_polling
        self.enable_background_polling = enable_background_polling

    def dispatch_payment_confirmation(self, payment_id: UUID, ticket_id: UUID) -> None:
        celery_app.send_task("send_ticket_confirmation_task", args=[str(ticket_id)])
        celery_app.send_task("send_payment_confirmation_task", args=[str(payment_id)])
        logger.info(f"Queued confirmation emails for payment {payment_id}")

    def schedule_polling(self, reference: str) -> None:
        if not self.enable_background_polling:
            return
        celery_app.send_task("supervise_payment_task", args=[reference])
        logger.info(f"Queued background polling for {reference}")
