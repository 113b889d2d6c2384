"""
API Exceptions and Error Handlers.
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional

from creditgate.credits import CreditError, InsufficientCreditsError, InvalidAmountError
from creditgate.queue import QueueError, AdmissionError

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Standard error response format."""
    error: str
    detail: Optional[str] = None
    code: str
    status_code: int
    retryable: bool = False


class APIError(Exception):
    """Base API exception."""

    def __init__(
        self,
        message: str,
        code: str = "API_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: Optional[str] = None,
        retryable: bool = False,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail
        self.retryable = retryable
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.message,
            detail=self.detail,
            code=self.code,
            status_code=self.status_code,
            retryable=self.retryable,
        )


class ValidationError(APIError):
    """400 - Bad Request / Validation Error."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class NotFoundError(APIError):
    """404 - Resource Not Found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} not found: {resource_id}",
            code="NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
        )


class JobNotFoundError(NotFoundError):
    """404 - Job Not Found."""

    def __init__(self, job_id: str):
        super().__init__(resource="Job", resource_id=job_id)
        self.code = "JOB_NOT_FOUND"


class ForbiddenError(APIError):
    """403 - Forbidden."""

    def __init__(self, message: str, code: str = "FORBIDDEN"):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_403_FORBIDDEN,
        )


class ServiceUnavailableError(APIError):
    """503 - Service Unavailable."""

    def __init__(
        self,
        service: str = "Queue service",
        code: str = "SERVICE_UNAVAILABLE",
        retryable: bool = True,
    ):
        super().__init__(
            message=f"{service} is temporarily unavailable",
            code=code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            retryable=retryable,
        )


def _status_for_domain_error(exc: Exception) -> int:
    if isinstance(exc, InsufficientCreditsError):
        return status.HTTP_402_PAYMENT_REQUIRED
    if isinstance(exc, InvalidAmountError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, AdmissionError):
        return status.HTTP_401_UNAUTHORIZED
    if getattr(exc, "retryable", False):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
    )


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle CreditError and QueueError.
    402 means top up credits, 503 means retry later.
    """
    status_code = _status_for_domain_error(exc)
    detail = None
    if isinstance(exc, InsufficientCreditsError):
        detail = f"required={exc.required}, available={exc.available}"

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")

    response = ErrorResponse(
        error=exc.message,
        detail=detail,
        code=exc.code,
        status_code=status_code,
        retryable=bool(getattr(exc, "retryable", False)),
    )
    return JSONResponse(status_code=status_code, content=response.model_dump())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if request.app.debug else None,
            "code": "INTERNAL_ERROR",
            "status_code": 500,
            "retryable": False,
        },
    )


DOMAIN_ERRORS = (CreditError, QueueError)
