"""
Celery tasks that settle payments by polling the gateway.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, select

from .base import DatabaseTask
from .celery_app import celery_app
from .dispatcher import CeleryTaskDispatcher
from ..config import get_settings
from ..models.payment import Payment, PaymentStatus
from ..services.payment_gateway import NormalizedStatus, PaynowGateway
from ..services.polling_supervisor import PollingSupervisor
from ..services.reconciler import PaymentReconciler, ReconciliationSource
from ..utils.exceptions import PaymentNotFoundError

logger = logging.getLogger(__name__)

STALE_PAYMENT_BATCH_SIZE = 50


def build_supervisor(gateway, session_factory) -> PollingSupervisor:
    settings = get_settings()
    reconciler = PaymentReconciler(session_factory, CeleryTaskDispatcher())
    return PollingSupervisor(
        gateway,
        reconciler,
        session_factory,
        interval=settings.payment_poll_interval_seconds,
        max_attempts=settings.payment_poll_max_attempts,
    )


@celery_app.task(bind=True, base=DatabaseTask, name="supervise_payment_task")
def supervise_payment_task(self, reference: str):
    """
    Poll the gateway for one payment until it settles or the budget runs out.

    Args:
        reference: Merchant reference of the payment
    """
    async def _supervise(session_factory):
        gateway = PaynowGateway.from_settings()
        try:
            report = await build_supervisor(gateway, session_factory).run(reference)
        except PaymentNotFoundError:
            logger.error(f"Background polling requested for unknown payment {reference}")
            return {"reference": reference, "result": "not_found"}
        finally:
            await gateway.aclose()

        return {
            "reference": reference,
            "result": report.result.value,
            "attempts": report.attempts,
            "reason": report.reason.value if report.reason else None,
        }

    return self.run_async(_supervise)


async def sweep_stale_payments(supervisor: PollingSupervisor, session_factory, older_than: datetime,
                               limit: int = STALE_PAYMENT_BATCH_SIZE) -> dict:
    """
    Poll once for each PENDING payment created before ``older_than``.

    A stale payment without a poll handle is a claim whose initiation never
    heard back from the gateway; it is failed so the ticket can be paid again.
    """
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                select(Payment.reference, Payment.poll_handle)
                .where(and_(
                    Payment.status == PaymentStatus.PENDING,
                    Payment.created_at < older_than,
                ))
                .order_by(Payment.created_at)
                .limit(limit)
            )
            stale = result.all()

    settled = 0
    for reference, poll_handle in stale:
        if poll_handle is None:
            logger.warning(f"Failing abandoned payment claim {reference}")
            outcome = await supervisor.reconciler.apply_status(
                reference, NormalizedStatus.FAILED, ReconciliationSource.POLL
            )
        else:
            outcome = (await supervisor.poll_once(reference, poll_handle=poll_handle)).outcome
        if outcome is not None and outcome.is_terminal:
            settled += 1

    logger.info(f"Swept {len(stale)} pending payments, {settled} settled")
    return {"checked": len(stale), "settled": settled}


@celery_app.task(bind=True, base=DatabaseTask, name="reconcile_pending_payments_task")
def reconcile_pending_payments_task(self):
    """
    Poll once for every payment still pending after its polling window.

    Catches payments whose webhook never arrived and whose polling loop
    timed out or never ran.
    """
    async def _sweep(session_factory):
        settings = get_settings()
        window = settings.payment_poll_interval_seconds * settings.payment_poll_max_attempts
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=window)

        gateway = PaynowGateway.from_settings()
        try:
            return await sweep_stale_payments(build_supervisor(gateway, session_factory), session_factory, cutoff)
        finally:
            await gateway.aclose()

    return self.run_async(_sweep)
