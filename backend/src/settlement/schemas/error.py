"""Response envelopes for caller-facing operations."""
from typing import Any, Optional

from pydantic import BaseModel, Field

from settlement.exceptions import SettlementError

GENERIC_ERROR_MESSAGE = "An unexpected error occurred"


class ErrorBody(BaseModel):
    """Error information."""

    message: str = Field(..., description="Human-readable error message")
    statusCode: int = Field(..., description="HTTP status code")


class ErrorResponse(BaseModel):
    """Standard error envelope: ``{success: false, error: {message, statusCode}}``."""

    success: bool = False
    error: ErrorBody


class SuccessResponse(BaseModel):
    """Standard success envelope."""

    success: bool = True
    message: str = "Success"
    data: Optional[Any] = None


def error_response(exc: Exception) -> ErrorResponse:
    """
    Map an exception to the error envelope.

    Settlement errors keep their message and status code; anything else is
    reported as a generic 500 so internals are not exposed.

    Args:
        exc: Raised exception

    Returns:
        ErrorResponse
    """
    if isinstance(exc, SettlementError):
        return ErrorResponse(error=ErrorBody(message=exc.message, statusCode=exc.status_code))
    return ErrorResponse(error=ErrorBody(message=GENERIC_ERROR_MESSAGE, statusCode=500))
