"""
FastAPI routes for mobile-money payments and gateway callbacks.
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse

from ..models.user import User
from ..schemas.common import ErrorResponse
from ..schemas.payment import (
    GatewayConfigResponse,
    PaymentAwaitResponse,
    PaymentHistoryResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentResponse,
    PaymentStatusResponse,
)
from ..services.payment_gateway import PaymentGatewayAdapter
from ..services.payment_service import PaymentService
from ..services.webhook_receiver import WebhookReceiver
from ..utils.dependencies import (
    get_current_user,
    get_payment_gateway,
    get_payment_service,
    get_webhook_receiver,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])


async def _read_callback_payload(request: Request) -> Dict[str, Any]:
    """The gateway posts form data; JSON is accepted for manual replays."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        return body if isinstance(body, dict) else {}

    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


@router.post(
    "/initiate",
    response_model=PaymentInitiateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse, "description": "Ticket not found"},
        409: {"model": ErrorResponse, "description": "Already paid, payment in progress or seat gone"},
        502: {"model": ErrorResponse, "description": "Gateway rejected the request"},
        503: {"model": ErrorResponse, "description": "Gateway unavailable"},
    },
)
async def initiate_payment(
    request: PaymentInitiateRequest,
    current_user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
):
    """
    Start a mobile-money payment for one of the caller's tickets.

    The customer receives a prompt on their phone. The payment settles
    through the gateway callback or the background poll.
    """
    initiation = await payment_service.initiate_payment(
        user_id=current_user.id,
        ticket_id=request.ticket_id,
        phone_number=request.phone_number,
        payment_method=request.payment_method,
    )
    return PaymentInitiateResponse(
        message=initiation.instructions or "Payment initiated successfully",
        reference=initiation.reference,
        payment_id=initiation.payment_id,
        ticket_id=initiation.ticket_id,
        instructions=initiation.instructions,
        poll_url=initiation.poll_url,
    )


@router.get("/history", response_model=PaymentHistoryResponse)
async def get_payment_history(
    current_user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
):
    payments = await payment_service.get_payment_history(current_user.id)
    return PaymentHistoryResponse(
        payments=[PaymentResponse.model_validate(payment) for payment in payments],
        total=len(payments),
    )


@router.get("/gateway-config", response_model=GatewayConfigResponse)
async def get_gateway_config(
    current_user: User = Depends(get_current_user),
    gateway: PaymentGatewayAdapter = Depends(get_payment_gateway),
):
    """Which gateway credentials are configured. Values are never returned."""
    return GatewayConfigResponse(**gateway.configuration_report())


@router.post("/webhook", response_class=PlainTextResponse)
async def payment_webhook(
    request: Request,
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    """
    Result URL for the gateway.

    Always answers 200 so the gateway stops redelivering; failures are
    logged by the receiver.
    """
    try:
        payload = await _read_callback_payload(request)
    except Exception:
        logger.exception("Could not read gateway callback body")
        return PlainTextResponse("OK")

    await receiver.receive(payload)
    return PlainTextResponse("OK")


@router.get(
    "/{reference}/status",
    response_model=PaymentStatusResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown payment reference"}},
)
async def get_payment_status(
    reference: str,
    payment_service: PaymentService = Depends(get_payment_service),
):
    """
    Current status of a payment.

    A pending payment is polled once at the gateway before answering.
    """
    return PaymentStatusResponse(**await payment_service.get_payment_status(reference))


@router.post("/{reference}/await", response_model=PaymentAwaitResponse)
async def await_payment(
    reference: str,
    payment_service: PaymentService = Depends(get_payment_service),
):
    """Poll the gateway until the payment settles or polling times out."""
    report = await payment_service.await_payment(reference)
    payment_status = await payment_service.current_status(reference)
    return PaymentAwaitResponse(
        reference=reference,
        result=report.result.value,
        attempts=report.attempts,
        status=payment_status.value,
        reason=report.reason.value if report.reason else None,
    )
