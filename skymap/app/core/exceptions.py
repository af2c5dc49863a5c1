"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Iterable

logger = logging.getLogger("skymap.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised when a required field is missing or malformed."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InvalidStateTransitionError(AppException):
    """Raised when a delivery status change is not in the transition table."""

    def __init__(self, current: str, target: str, allowed: Iterable[str]):
        allowed = list(allowed)
        super().__init__(
            message=(
                f"Cannot transition from {current} to {target}. "
                f"Allowed transitions: {', '.join(allowed) or 'none'}"
            ),
            error_code="ERR_STATE_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"current": current, "target": target, "allowed": allowed}
        )
        self.current = current
        self.target = target
        self.allowed = allowed


class ConflictError(AppException):
    """Raised when a concurrent writer won the race for a resource."""

    def __init__(self, reason: str, details: Dict[str, Any] = None):
        details = dict(details or {})
        details.setdefault("reason", reason)
        super().__init__(
            message=reason,
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )
        self.reason = reason


class NoBillableItemsError(AppException):
    """Raised when invoice generation finds nothing to bill."""

    def __init__(self, business_id: int):
        super().__init__(
            message="No billable items found in the selected date range",
            error_code="ERR_INVOICE_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"business_id": business_id}
        )


class NumberGenerationExhaustedError(AppException):
    """Raised when no unique invoice number could be produced. Caller must resubmit."""

    def __init__(self, attempts: int):
        super().__init__(
            message=f"Could not generate a unique invoice number after {attempts} attempts",
            error_code="ERR_INVOICE_002",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"attempts": attempts}
        )


class DownstreamNotificationFailure(Exception):
    """
    Raised when an SMS/notification could not be delivered.

    Only ever logged and captured in the dead letter queue, never surfaced
    as a failure of the operation that triggered the notification.
    """

    def __init__(self, recipient: str, error: str):
        self.recipient = recipient
        self.error = error
        super().__init__(f"Notification to {recipient} failed: {error}")


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
