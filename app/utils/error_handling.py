"""Platform exceptions, error bodies and structured logging helpers.

Every exception raised on purpose by the request path derives from
``VideoPlatformException`` and carries its HTTP status, so the application's
exception handler can answer without knowing the concrete type.
"""
import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class VideoPlatformException(Exception):
    """Base class for errors that map to a client-facing response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "PLATFORM_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.error_code, "message": self.message, "details": self.details}


class ValidationError(VideoPlatformException):
    """Bad input the caller can correct."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message, details={"field": field, **(details or {})})


class NotFoundError(VideoPlatformException):
    """Missing, or owned by another organization (the two are indistinguishable)."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"

    def __init__(self, message: str, resource: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message, details={"resource": resource, **(details or {})})


class QuotaExceededError(VideoPlatformException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "QUOTA_EXCEEDED"

    def __init__(self, message: str, limit: Optional[int] = None, details: Optional[Dict] = None):
        super().__init__(message, details={"limit": limit, **(details or {})})


class ConflictError(VideoPlatformException):
    """The resource is in a state that does not allow the request yet."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT"


class ServiceUnavailableError(VideoPlatformException):
    """No capacity for more work right now; the caller should retry later."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "SERVICE_UNAVAILABLE"


class ProcessingError(VideoPlatformException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "PROCESSING_ERROR"


class ExternalServiceError(VideoPlatformException):
    """A dependency outside the process (Stripe, ffmpeg) failed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, service: str, details: Optional[Dict] = None):
        super().__init__(message, details={"service": service, **(details or {})})


def build_error_response(
    exception: Exception,
    include_traceback: bool = False
) -> JSONResponse:
    """
    Turn an exception into a JSON error response.

    The body always has FastAPI's top-level ``detail`` plus an ``error``
    object. Unexpected exceptions get a generic message so internals never
    reach the client.
    """
    if isinstance(exception, VideoPlatformException):
        status_code = exception.status_code
        error = exception.to_dict()
    elif isinstance(exception, HTTPException):
        status_code = exception.status_code
        error = {"code": "HTTP_ERROR", "message": exception.detail, "details": {}}
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        error = {
            "code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "details": {"type": type(exception).__name__},
        }

    if include_traceback:
        error["traceback"] = traceback.format_exc()

    return JSONResponse(
        status_code=status_code,
        content={"detail": error["message"], "error": error}
    )


def _structured(context: Optional[str], extra: Optional[Dict]) -> Dict[str, Any]:
    return {"context": context, **(extra or {})}


def log_error(
    error: Exception,
    context: Optional[str] = None,
    organization_id: Optional[str] = None,
    extra: Optional[Dict] = None
):
    """
    Log an exception with its traceback and structured context.

    Args:
        error: The exception
        context: Where it happened (e.g. "video_upload", "video_processing")
        organization_id: Tenant the failing work belonged to
        extra: Additional fields for the log record
    """
    data = _structured(context, extra)
    data.update(
        error_type=type(error).__name__,
        error_message=str(error),
        organization_id=organization_id,
    )
    if isinstance(error, VideoPlatformException):
        data["error_code"] = error.error_code

    logger.error(f"{context or 'error'}: {error}", extra=data, exc_info=error)


def log_info(message: str, context: Optional[str] = None, extra: Optional[Dict] = None):
    logger.info(message, extra=_structured(context, extra))
