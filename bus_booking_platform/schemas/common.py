"""
Common schemas for API responses and error handling.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Schema for detailed error information."""

    error_code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    suggestions: Optional[List[str]] = Field(None, description="Helpful suggestions for resolving the error")
    retry_after: Optional[int] = Field(None, description="Seconds to wait before retrying")


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    error: ErrorDetail
    error_id: str
    timestamp: str

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error": {
                        "error_code": "PAYMENT_IN_PROGRESS",
                        "message": "A payment for this ticket is already in progress",
                        "details": {
                            "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
                            "reference": "TKT123E4567LZ3K9QAB1C"
                        },
                        "suggestions": [
                            "Approve the prompt on your phone",
                            "Check the payment status"
                        ]
                    },
                    "error_id": "9b2f0e1c-4c1d-4f7e-9d8a-0c6b1f1e2a3b",
                    "timestamp": "2025-10-30T08:15:00Z"
                }
            ]
        }
    }
