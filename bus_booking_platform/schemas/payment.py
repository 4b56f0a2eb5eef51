"""
Pydantic schemas for payment-related API requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from ..models.payment import FailureReason, PaymentStatus
from ..utils.references import SUPPORTED_PAYMENT_METHODS


class PaymentInitiateRequest(BaseModel):
    """Schema for starting a mobile-money payment."""

    ticket_id: UUID = Field(..., description="Ticket to pay for")
    phone_number: str = Field(..., min_length=1, max_length=20, description="Mobile number that receives the prompt")
    payment_method: str = Field("ecocash", description="ecocash or onemoney")

    @field_validator('payment_method')
    @classmethod
    def validate_method(cls, v):
        method = v.strip().lower()
        if method not in SUPPORTED_PAYMENT_METHODS:
            raise ValueError(f"payment_method must be one of {', '.join(SUPPORTED_PAYMENT_METHODS)}")
        return method


class PaymentInitiateResponse(BaseModel):
    success: bool = True
    message: str = "Payment initiated successfully"
    reference: str
    payment_id: UUID
    ticket_id: UUID
    instructions: Optional[str] = None
    poll_url: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    """What a client polling a payment sees."""

    status: str
    success: bool
    message: str
    reference: str
    gateway_status: Optional[str] = None
    reason: Optional[str] = None
    ticket: Optional[Dict[str, Any]] = None


class PaymentAwaitResponse(BaseModel):
    reference: str
    result: str
    attempts: int
    status: str
    reason: Optional[str] = None


class PaymentResponse(BaseModel):
    id: UUID
    reference: str
    ticket_id: UUID
    amount: Decimal
    payment_method: str
    status: PaymentStatus
    failure_reason: Optional[FailureReason]
    gateway_reference: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentResponse]
    total: int


class GatewayConfigResponse(BaseModel):
    integration_id: str
    integration_key: str
    result_url: str
    return_url: str
    circuit_state: str
