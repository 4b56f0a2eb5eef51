"""
Error handling middleware for the Bus Booking Platform.
"""

import logging
import traceback
from datetime import datetime
from uuid import uuid4

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError
from pydantic import ValidationError as PydanticValidationError

from ..utils.exceptions import (
    BookingPlatformError,
    ErrorCode,
    ValidationError,
    NotFoundError,
    BusinessLogicError,
    ExternalServiceError,
)

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware for error handling and response formatting."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        """Process request and handle any exceptions."""
        error_id = str(uuid4())

        try:
            return await call_next(request)
        except Exception as exc:
            return self.handle_exception(request, exc, error_id)

    def handle_exception(self, request: Request, exc: Exception, error_id: str) -> JSONResponse:
        """Log the exception and turn it into a JSON error response."""
        self._log_error(request, exc, error_id)

        if isinstance(exc, BookingPlatformError):
            return self._handle_platform_error(exc, error_id)
        elif isinstance(exc, PydanticValidationError):
            return self._handle_validation_error(exc, error_id)
        elif isinstance(exc, IntegrityError):
            return self._handle_integrity_error(exc, error_id)
        elif isinstance(exc, (OperationalError, SQLTimeoutError)):
            return self._handle_database_error(exc, error_id)
        else:
            return self._handle_unexpected_error(exc, error_id)

    def _error_response(
        self,
        error: BookingPlatformError,
        error_id: str,
        status_code: int,
        headers: dict | None = None,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={
                "error": error.to_dict(),
                "error_id": error_id,
                "timestamp": self._get_timestamp(),
            },
            headers=headers,
        )

    def _handle_platform_error(self, exc: BookingPlatformError, error_id: str) -> JSONResponse:
        """Handle the platform's own exceptions."""
        status_code = self._get_status_code_for_error(exc)

        if status_code >= 500 and exc.error_code == ErrorCode.INTERNAL_ERROR:
            # Ledger failures are logged in full; clients get a generic message
            exc = BookingPlatformError("An internal error occurred", error_code=ErrorCode.INTERNAL_ERROR)

        headers = {}
        if exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)

        return self._error_response(exc, error_id, status_code, headers)

    def _handle_validation_error(self, exc: PydanticValidationError, error_id: str) -> JSONResponse:
        """Handle Pydantic validation errors."""
        field_errors: dict[str, list[str]] = {}

        for error in exc.errors():
            field_path = ".".join(str(loc) for loc in error["loc"])
            field_errors.setdefault(field_path, []).append(error["msg"])

        validation_error = ValidationError("Request validation failed", field_errors=field_errors)
        return self._error_response(validation_error, error_id, status.HTTP_422_UNPROCESSABLE_ENTITY)

    def _handle_integrity_error(self, exc: IntegrityError, error_id: str) -> JSONResponse:
        """Handle database integrity constraint violations."""
        error_message = str(exc.orig) if hasattr(exc, 'orig') else str(exc)

        if "unique" in error_message.lower():
            constraint_type = "unique"
            message = "A record with this information already exists"
        elif "foreign key" in error_message.lower():
            constraint_type = "foreign_key"
            message = "Referenced resource does not exist"
        else:
            constraint_type = "unknown"
            message = "Data integrity constraint violation"

        platform_error = BusinessLogicError(
            message,
            error_code=ErrorCode.CONCURRENCY_CONFLICT,
            details={"constraint_type": constraint_type},
        )
        return self._error_response(platform_error, error_id, status.HTTP_409_CONFLICT)

    def _handle_database_error(self, exc: Exception, error_id: str) -> JSONResponse:
        """Handle database connection and operational errors."""
        platform_error = ExternalServiceError(
            "database",
            "Database service temporarily unavailable",
            details={"error_type": type(exc).__name__}
        )
        return self._error_response(
            platform_error,
            error_id,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            headers={"Retry-After": "30"},
        )

    def _handle_unexpected_error(self, exc: Exception, error_id: str) -> JSONResponse:
        """Handle unexpected errors."""
        platform_error = BookingPlatformError(
            "An unexpected error occurred",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"error_type": type(exc).__name__} if self.debug else None
        )

        response_data = {
            "error": platform_error.to_dict(),
            "error_id": error_id,
            "timestamp": self._get_timestamp()
        }

        if self.debug:
            response_data["debug"] = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response_data
        )

    def _get_status_code_for_error(self, exc: BookingPlatformError) -> int:
        """Map error codes to HTTP status codes."""
        status_map = {
            ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
            ErrorCode.INVALID_AMOUNT: status.HTTP_422_UNPROCESSABLE_ENTITY,
            ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
            ErrorCode.ALREADY_PAID: status.HTTP_409_CONFLICT,
            ErrorCode.PAYMENT_IN_PROGRESS: status.HTTP_409_CONFLICT,
            ErrorCode.SEAT_TAKEN: status.HTTP_409_CONFLICT,
            ErrorCode.SEAT_EXHAUSTED: status.HTTP_409_CONFLICT,
            ErrorCode.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
            ErrorCode.EXTERNAL_SERVICE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
            ErrorCode.GATEWAY_REJECTED: status.HTTP_502_BAD_GATEWAY,
            ErrorCode.GATEWAY_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
            ErrorCode.INVALID_CALLBACK: status.HTTP_400_BAD_REQUEST,
            ErrorCode.EMAIL_SERVICE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
        }

        return status_map.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    def _log_error(self, request: Request, exc: Exception, error_id: str):
        """Log error with request context."""
        request_info = {
            "method": request.method,
            "url": str(request.url),
            "client_ip": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }

        user_info = {}
        if hasattr(request.state, "user"):
            user_info = {"user_id": str(request.state.user.id)}

        if isinstance(exc, BookingPlatformError):
            extra = {
                "error_id": error_id,
                "error_code": exc.error_code.value,
                "request": request_info,
                "user": user_info,
                "details": exc.details
            }
            if isinstance(exc, (ValidationError, NotFoundError, BusinessLogicError)):
                logger.warning(f"Client error [{error_id}]: {exc.message}", extra=extra)
            elif isinstance(exc, ExternalServiceError):
                logger.error(f"External service error [{error_id}]: {exc.message}", extra=extra)
            else:
                logger.error(f"System error [{error_id}]: {exc.message}", extra=extra, exc_info=exc)
        else:
            logger.error(
                f"Unexpected error [{error_id}]: {str(exc)}",
                extra={
                    "error_id": error_id,
                    "error_type": type(exc).__name__,
                    "request": request_info,
                    "user": user_info,
                },
                exc_info=exc,
            )

    def _get_timestamp(self) -> str:
        """Get current timestamp in ISO format."""
        return datetime.utcnow().isoformat() + "Z"
