"""
Payment gateway adapter.

Normalizes the gateway's create / send / poll operations into a fixed
status vocabulary so nothing downstream depends on gateway wording.
``PaynowGateway`` talks to Paynow's remote transaction interface over
form-encoded HTTP.
"""

import enum
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Protocol
from urllib.parse import parse_qsl

import httpx

from ..config import Settings, get_settings
from ..utils.circuit_breaker import CircuitBreaker, get_payment_circuit_breaker
from ..utils.exceptions import (
    ExternalServiceError,
    GatewayRejectedError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidCallbackError,
)
from ..utils.logging_config import log_security_event
from ..utils.references import (
    SUPPORTED_PAYMENT_METHODS,
    is_valid_mobile_number,
    normalize_mobile_number,
)

logger = logging.getLogger(__name__)


class NormalizedStatus(str, enum.Enum):
    """Gateway-independent payment status."""
    PENDING = "pending"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"
    TRANSIENT_ERROR = "transient_error"

    @property
    def is_terminal(self) -> bool:
        return self in (NormalizedStatus.PAID, NormalizedStatus.CANCELLED, NormalizedStatus.FAILED)


# Both success tokens, and the delivery states that follow payment, mean Paid
PAYNOW_STATUS_MAP: Dict[str, NormalizedStatus] = {
    "paid": NormalizedStatus.PAID,
    "completed": NormalizedStatus.PAID,
    "awaiting delivery": NormalizedStatus.PAID,
    "delivered": NormalizedStatus.PAID,
    "created": NormalizedStatus.PENDING,
    "sent": NormalizedStatus.SENT,
    "cancelled": NormalizedStatus.CANCELLED,
    "failed": NormalizedStatus.FAILED,
}


@dataclass(frozen=True)
class PaymentHandle:
    """A payment prepared locally, not yet sent to the gateway."""
    reference: str
    auth_email: str
    amount: Decimal
    description: str = ""


@dataclass
class MobilePromptResult:
    """Outcome of asking the gateway to push a prompt to the payer's phone."""
    accepted: bool
    poll_handle: Optional[str] = None
    instructions: Optional[str] = None
    gateway_reference: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, str] = field(default_factory=dict)

    def trace(self) -> str:
        return json.dumps(self.raw, sort_keys=True)


@dataclass(frozen=True)
class GatewayCallback:
    reference: str
    status: NormalizedStatus
    raw_status: str
    poll_handle: Optional[str] = None


class PaymentGatewayAdapter(Protocol):
    """What the payment flow needs from a gateway."""

    def create_payment(
        self,
        reference: str,
        payer_contact: str,
        amount: Decimal,
        description: Optional[str] = None,
    ) -> PaymentHandle: ...

    async def send_mobile_prompt(
        self,
        handle: PaymentHandle,
        phone_number: str,
        method: str,
    ) -> MobilePromptResult: ...

    async def poll_status(self, poll_handle: str) -> NormalizedStatus: ...

    def parse_callback(self, payload: Mapping[str, Any]) -> GatewayCallback: ...

    def configuration_report(self) -> Dict[str, Any]: ...


def normalize_status(raw_status: Optional[str]) -> NormalizedStatus:
    """Map a gateway status word onto the normalized vocabulary."""
    if not raw_status:
        return NormalizedStatus.PENDING
    return PAYNOW_STATUS_MAP.get(raw_status.strip().lower(), NormalizedStatus.PENDING)


def paynow_hash(values: Mapping[str, Any], integration_key: str) -> str:
    """SHA512 over the concatenated field values and the integration key, upper-case hex."""
    joined = "".join(str(value) for key, value in values.items() if key.lower() != "hash")
    return hashlib.sha512((joined + integration_key).encode("utf-8")).hexdigest().upper()


def verify_paynow_hash(values: Mapping[str, Any], integration_key: str) -> bool:
    received = values.get("hash")
    if not received:
        return False
    return hmac.compare_digest(paynow_hash(values, integration_key), str(received).upper())


def parse_paynow_response(body: str) -> Dict[str, str]:
    """Paynow answers with a form-encoded body; field order matters for the hash."""
    return {key.lower(): value for key, value in parse_qsl(body, keep_blank_values=True)}


class PaynowGateway:
    """Paynow mobile-money (EcoCash / OneMoney) gateway adapter."""

    def __init__(
        self,
        integration_id: Optional[str],
        integration_key: Optional[str],
        result_url: str,
        return_url: str,
        initiate_url: str,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        timeout: float = 30.0,
    ):
        self.integration_id = integration_id
        self.integration_key = integration_key
        self.result_url = result_url
        self.return_url = return_url
        self.initiate_url = initiate_url
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.circuit_breaker = circuit_breaker or get_payment_circuit_breaker(httpx.HTTPError)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> "PaynowGateway":
        settings = settings or get_settings()
        return cls(
            integration_id=settings.paynow_integration_id,
            integration_key=settings.paynow_integration_key,
            result_url=settings.paynow_result_url,
            return_url=settings.paynow_return_url,
            initiate_url=settings.paynow_initiate_mobile_url,
            client=client,
            circuit_breaker=circuit_breaker,
            timeout=settings.gateway_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.integration_id and self.integration_key)

    async def aclose(self) -> None:
        await self.client.aclose()

    def configuration_report(self) -> Dict[str, Any]:
        """Which credentials are present, never their values."""
        return {
            "integration_id": "SET" if self.integration_id else "MISSING",
            "integration_key": "SET" if self.integration_key else "MISSING",
            "result_url": self.result_url,
            "return_url": self.return_url,
            "circuit_state": self.circuit_breaker.state.value,
        }

    def create_payment(
        self,
        reference: str,
        payer_contact: str,
        amount: Decimal,
        description: Optional[str] = None,
    ) -> PaymentHandle:
        """
        Prepare a payment locally.

        Raises:
            InvalidAmountError: When the amount is not a positive number
        """
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmountError(amount) from e

        if not value.is_finite() or value <= 0:
            raise InvalidAmountError(amount)

        return PaymentHandle(
            reference=reference,
            auth_email=payer_contact,
            amount=value.quantize(Decimal("0.01")),
            description=description or "",
        )

    async def send_mobile_prompt(
        self,
        handle: PaymentHandle,
        phone_number: str,
        method: str,
    ) -> MobilePromptResult:
        """
        Ask the gateway to push a payment prompt to the payer's phone.

        Raises:
            GatewayRejectedError: Bad phone number or method, or the gateway said no
            GatewayUnavailableError: Gateway not configured or not reachable
        """
        method = (method or "").lower()
        if method not in SUPPORTED_PAYMENT_METHODS:
            raise GatewayRejectedError(f"unsupported payment method '{method}'")
        if not is_valid_mobile_number(phone_number):
            raise GatewayRejectedError("invalid mobile number")
        if not self.is_configured:
            raise GatewayUnavailableError("gateway credentials are not configured")

        values: Dict[str, str] = {
            "resulturl": self.result_url,
            "returnurl": self.return_url,
            "reference": handle.reference,
            "amount": f"{handle.amount:.2f}",
            "id": str(self.integration_id),
            "additionalinfo": handle.description,
            "authemail": handle.auth_email,
            "phone": normalize_mobile_number(phone_number),
            "method": method,
            "status": "Message",
        }
        values["hash"] = paynow_hash(values, self.integration_key)

        try:
            response = await self._post(self.initiate_url, values)
        except ExternalServiceError as e:
            logger.error(f"Paynow initiation failed for {handle.reference}: {e.message}")
            raise GatewayUnavailableError(e.message) from e

        status = response.get("status", "").lower()
        if status != "ok":
            error = response.get("error") or "payment request rejected"
            logger.warning(f"Paynow rejected {handle.reference}: {error}")
            raise GatewayRejectedError(error, details={"reference": handle.reference})

        if not verify_paynow_hash(response, self.integration_key):
            log_security_event("paynow_initiation_hash_mismatch", {"reference": handle.reference})
            raise GatewayRejectedError("gateway response failed integrity check")

        logger.info(f"Paynow accepted {handle.reference}")
        return MobilePromptResult(
            accepted=True,
            poll_handle=response.get("pollurl"),
            instructions=response.get("instructions"),
            gateway_reference=response.get("paynowreference"),
            raw=response,
        )

    async def poll_status(self, poll_handle: str) -> NormalizedStatus:
        """Ask the gateway for the current status. Never raises."""
        try:
            response = await self._post(poll_handle, {})
        except ExternalServiceError as e:
            logger.warning(f"Paynow poll failed: {e.message}")
            return NormalizedStatus.TRANSIENT_ERROR

        if response.get("status", "").lower() == "error":
            logger.warning(f"Paynow poll returned an error: {response.get('error')}")
            return NormalizedStatus.PENDING

        if self.integration_key and not verify_paynow_hash(response, self.integration_key):
            log_security_event("paynow_poll_hash_mismatch", {"reference": response.get("reference")})
            return NormalizedStatus.PENDING

        return normalize_status(response.get("status"))

    def parse_callback(self, payload: Mapping[str, Any]) -> GatewayCallback:
        """
        Turn a result-URL callback into reference + normalized status.

        A callback without a hash is accepted; a callback whose hash does
        not verify is refused.

        Raises:
            InvalidCallbackError: Missing fields or a failed integrity check
        """
        values = {str(key).lower(): value for key, value in payload.items()}
        reference = values.get("reference")
        raw_status = values.get("status")

        if not reference or not raw_status:
            raise InvalidCallbackError("callback is missing reference or status")

        if "hash" in values and not (
            self.integration_key and verify_paynow_hash(values, self.integration_key)
        ):
            log_security_event("paynow_callback_hash_mismatch", {"reference": reference})
            raise InvalidCallbackError("callback failed integrity check", details={"reference": reference})

        return GatewayCallback(
            reference=str(reference),
            status=normalize_status(str(raw_status)),
            raw_status=str(raw_status),
            poll_handle=values.get("pollurl"),
        )

    async def _post(self, url: str, data: Mapping[str, str]) -> Dict[str, str]:
        async def send() -> Dict[str, str]:
            response = await self.client.post(url, data=dict(data))
            response.raise_for_status()
            return parse_paynow_response(response.text)

        return await self.circuit_breaker.call(send)
