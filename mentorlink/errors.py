"""
mentorlink/errors.py
Centralized error classification

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input / malformed request / invalid state
- 401: Authentication missing or expired
- 403: Not a participant, not the owner, removed from the session
- 404: Session or participant does not exist (or already removed)
- 429: Code runner saturated
- 500: Store failure (store diagnostic is logged, never returned)
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"

    FORBIDDEN = "FORBIDDEN"
    NOT_PARTICIPANT = "NOT_PARTICIPANT"
    PARTICIPANT_REMOVED = "PARTICIPANT_REMOVED"
    OWNER_REQUIRED = "OWNER_REQUIRED"
    ROLE_REQUIRED = "ROLE_REQUIRED"

    NOT_FOUND = "NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    PARTICIPANT_NOT_FOUND = "PARTICIPANT_NOT_FOUND"

    INVALID_STATE = "INVALID_STATE"
    SESSION_CLOSED = "SESSION_CLOSED"
    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    ROOM_CONFLICT = "ROOM_CONFLICT"

    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class BadRequestError(APIError):
    """400 Bad Request - Invalid input"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Bad Request",
            message=message,
            code=code,
            details=details
        )


class UnauthorizedError(APIError):
    """401 Unauthorized - Authentication required"""
    def __init__(self, message: str = "Authentication required", code: str = ErrorCode.AUTH_REQUIRED):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Unauthorized",
            message=message,
            code=code
        )


class ForbiddenError(APIError):
    """403 Forbidden - Access denied"""
    def __init__(self, message: str, code: str = ErrorCode.FORBIDDEN, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, message: str, code: str = ErrorCode.NOT_FOUND):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class InvalidStateError(APIError):
    """400 Bad Request - Invalid state transition"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_STATE, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Invalid State",
            message=message,
            code=code,
            details=details
        )


class RateLimitError(APIError):
    """429 Too Many Requests"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later.", retry_after: int = 5):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error="Rate Limited",
            message=message,
            code=ErrorCode.RATE_LIMITED,
            details={"retry_after_seconds": retry_after}
        )


class ServiceError(APIError):
    """
    500 - A store operation failed.

    The message names the operation ("Unable to store message"); the
    store diagnostic stays in the server log under log_id.
    """
    def __init__(self, message: str, log_id: Optional[str] = None):
        details = {"log_id": log_id} if log_id else None
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Internal Error",
            message=message,
            code=ErrorCode.SERVICE_UNAVAILABLE,
            details=details
        )


def new_log_id() -> str:
    """Short correlation id for log lines."""
    return str(uuid.uuid4())[:8]


def wrap_store_failure(error: Exception, message: str) -> ServiceError:
    """Log a repository failure and return the caller-safe ServiceError for it."""
    log_id = new_log_id()
    diagnostic = error.to_dict() if hasattr(error, "to_dict") else {"message": str(error)}
    logger.error(f"[{log_id}] {message}: {type(error).__name__}: {diagnostic}")
    return ServiceError(message, log_id=log_id)


def error_message(error: BaseException, fallback: str) -> str:
    """Message safe to show a client: classified errors keep theirs, anything else gets the fallback."""
    if isinstance(error, APIError):
        return error.message
    return fallback
