"""
Custom exceptions for the Bus Booking Platform.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the platform."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"

    # Business logic errors
    ALREADY_PAID = "ALREADY_PAID"
    PAYMENT_IN_PROGRESS = "PAYMENT_IN_PROGRESS"
    SEAT_TAKEN = "SEAT_TAKEN"
    SEAT_EXHAUSTED = "SEAT_EXHAUSTED"
    INVALID_AMOUNT = "INVALID_AMOUNT"

    # Concurrency errors
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    GATEWAY_REJECTED = "GATEWAY_REJECTED"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    INVALID_CALLBACK = "INVALID_CALLBACK"
    EMAIL_SERVICE_ERROR = "EMAIL_SERVICE_ERROR"


class BookingPlatformError(Exception):
    """Base exception class for the booking platform."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        """Initialize the exception with comprehensive error information."""
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result


class ValidationError(BookingPlatformError):
    """Exception raised for validation errors."""

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            details={"field_errors": field_errors} if field_errors else None,
            **kwargs
        )
        self.field_errors = field_errors or {}


class InvalidAmountError(ValidationError):
    """Exception raised when a payment amount is not strictly positive."""

    def __init__(self, amount: Any, **kwargs):
        super().__init__(
            f"Payment amount must be greater than zero, got {amount}",
            field_errors={"amount": ["must be greater than zero"]},
            **kwargs
        )
        self.error_code = ErrorCode.INVALID_AMOUNT


class NotFoundError(BookingPlatformError):
    """Base exception for resource not found errors.

    The message never says whether the resource exists for someone else.
    """

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class BusNotFoundError(NotFoundError):
    """Exception raised when a bus is not found."""

    def __init__(self, bus_id: str, **kwargs):
        super().__init__(
            "Bus not found",
            resource_type="bus",
            resource_id=bus_id,
            suggestions=["Check the bus ID", "Browse available buses"],
            **kwargs
        )


class TicketNotFoundError(NotFoundError):
    """Exception raised when a ticket is missing or not owned by the caller."""

    def __init__(self, ticket_id: str, **kwargs):
        super().__init__(
            "Ticket not found",
            resource_type="ticket",
            resource_id=ticket_id,
            suggestions=["Check the ticket ID", "View your tickets"],
            **kwargs
        )


class PaymentNotFoundError(NotFoundError):
    """Exception raised when no payment carries the given reference."""

    def __init__(self, reference: str, **kwargs):
        super().__init__(
            "Payment not found",
            resource_type="payment",
            resource_id=reference,
            **kwargs
        )


class BusinessLogicError(BookingPlatformError):
    """Base exception for business logic violations."""
    pass


class AlreadyPaidError(BusinessLogicError):
    """Exception raised when payment is initiated for a completed ticket."""

    def __init__(self, ticket_id: str, **kwargs):
        super().__init__(
            "Ticket has already been paid",
            error_code=ErrorCode.ALREADY_PAID,
            details={"ticket_id": ticket_id},
            suggestions=["View your tickets"],
            **kwargs
        )


class PaymentInProgressError(BusinessLogicError):
    """Exception raised when a ticket already has a pending payment."""

    def __init__(self, ticket_id: str, reference: str, **kwargs):
        super().__init__(
            "A payment for this ticket is already in progress",
            error_code=ErrorCode.PAYMENT_IN_PROGRESS,
            details={"ticket_id": ticket_id, "reference": reference},
            suggestions=["Approve the prompt on your phone", "Check the payment status"],
            **kwargs
        )


class SeatTakenError(BusinessLogicError):
    """Exception raised when the seat is already held by a completed ticket."""

    def __init__(self, bus_id: str, seat_number: int, **kwargs):
        super().__init__(
            f"Seat {seat_number} is already booked",
            error_code=ErrorCode.SEAT_TAKEN,
            details={"bus_id": bus_id, "seat_number": seat_number},
            suggestions=["Choose a different seat", "Refresh seat availability"],
            **kwargs
        )


class SeatExhaustedError(BusinessLogicError):
    """Exception raised when a bus has no seats left to commit."""

    def __init__(self, bus_id: str, **kwargs):
        super().__init__(
            "No seats available on this bus",
            error_code=ErrorCode.SEAT_EXHAUSTED,
            details={"bus_id": bus_id},
            suggestions=["Choose a different departure"],
            **kwargs
        )


class ReconciliationError(BookingPlatformError):
    """Exception raised when a gateway status could not be written to the ledger.

    Callers retry; the message returned to clients stays generic.
    """

    def __init__(self, reference: str, message: str = "Payment could not be reconciled", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"reference": reference},
            **kwargs
        )
        self.reference = reference


class ExternalServiceError(BookingPlatformError):
    """Exception raised for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        merged_details = {"service_name": service_name, "status_code": status_code}
        if details:
            merged_details.update(details)
        kwargs.setdefault("suggestions", ["Try again later", "Contact support if problem persists"])
        super().__init__(
            f"{service_name} service error: {message}",
            error_code=error_code,
            details=merged_details,
            **kwargs
        )


class PaymentGatewayError(ExternalServiceError):
    """Base exception for payment gateway failures."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR, **kwargs):
        super().__init__("payment gateway", message, error_code=error_code, **kwargs)


class GatewayRejectedError(PaymentGatewayError):
    """Exception raised when the gateway refuses a payment request."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.GATEWAY_REJECTED,
            suggestions=["Check the phone number and payment method", "Try again"],
            **kwargs
        )


class GatewayUnavailableError(PaymentGatewayError):
    """Exception raised when the gateway cannot be reached."""

    def __init__(self, message: str = "gateway unreachable", retry_after: int = 30, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.GATEWAY_UNAVAILABLE,
            retry_after=retry_after,
            **kwargs
        )


class InvalidCallbackError(PaymentGatewayError):
    """Exception raised for a gateway callback that cannot be trusted or parsed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code=ErrorCode.INVALID_CALLBACK, **kwargs)


class EmailServiceError(ExternalServiceError):
    """Exception raised for email service failures."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            "email",
            message,
            error_code=ErrorCode.EMAIL_SERVICE_ERROR,
            **kwargs
        )
