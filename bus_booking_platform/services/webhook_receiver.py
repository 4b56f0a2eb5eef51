"""
Ingress for the gateway's result-URL callbacks.
"""

import logging
from typing import Any, Mapping, Optional

from ..utils.exceptions import InvalidCallbackError, PaymentNotFoundError, ReconciliationError
from ..utils.retry import RetryConfig, retry_async
from .payment_gateway import PaymentGatewayAdapter
from .reconciler import PaymentReconciler, ReconciliationOutcome, ReconciliationSource

logger = logging.getLogger(__name__)


class WebhookReceiver:
    """
    Feeds gateway callbacks into the reconciler.

    ``receive`` never raises: the gateway must always get an acknowledgement,
    and anything that went wrong is logged for manual follow-up.
    """

    def __init__(
        self,
        gateway: PaymentGatewayAdapter,
        reconciler: PaymentReconciler,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.gateway = gateway
        self.reconciler = reconciler
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)

    async def receive(self, payload: Mapping[str, Any]) -> Optional[ReconciliationOutcome]:
        try:
            callback = self.gateway.parse_callback(payload)
        except InvalidCallbackError as e:
            logger.warning(f"Ignoring gateway callback: {e.message}", extra={"details": e.details})
            return None

        logger.info(f"Gateway callback for {callback.reference}: {callback.raw_status}")

        try:
            return await retry_async(
                self.reconciler.apply_status,
                self.retry_config,
                (ReconciliationError,),
                (PaymentNotFoundError,),
                callback.reference,
                callback.status,
                ReconciliationSource.WEBHOOK,
            )
        except PaymentNotFoundError:
            logger.error(f"Gateway callback for unknown payment {callback.reference}")
        except ReconciliationError as e:
            logger.error(
                f"Gateway callback for {callback.reference} could not be applied; needs manual follow-up",
                extra={"details": e.details},
            )
        except Exception:
            logger.exception(f"Unexpected error handling gateway callback for {callback.reference}")

        return None
