"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import DBAPIError
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised for malformed or out-of-range input (step gaps, fare max < min, ...)."""

    def __init__(self, message: str, details: Dict[str, Any] = None, error_code: str = "ERR_VALIDATION_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


def reject_nulls(update_data: Dict[str, Any], required: tuple) -> None:
    """Refuse a patch that sets a required field to null."""
    nulls = sorted(field for field in required if field in update_data and update_data[field] is None)
    if nulls:
        raise ValidationError("These fields cannot be null", details={"fields": nulls})


class InvalidCoordinatesError(ValidationError):
    """Raised when a point falls outside the operating bounding box."""

    def __init__(self, latitude: float, longitude: float, bounds: Dict[str, float]):
        super().__init__(
            message="Coordinates are outside the supported area",
            details={"latitude": latitude, "longitude": longitude, "bounds": bounds},
            error_code="ERR_VALIDATION_002"
        )


class NotFoundError(AppException):
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


class ConflictError(AppException):
    """Raised for duplicates: an active route for the pair, a repeated report, ..."""

    def __init__(self, message: str, details: Dict[str, Any] = None, error_code: str = "ERR_CONFLICT_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class CooldownActiveError(ConflictError):
    """Raised when a contributor reports on the same step again inside the cooldown window."""

    def __init__(self, message: str, retry_after_seconds: int):
        super().__init__(
            message=message,
            details={"retry_after_seconds": retry_after_seconds},
            error_code="ERR_CONFLICT_003"
        )


class ConcurrentUpdateError(ConflictError):
    """Raised when an aggregate row changed underneath a writer. Safe to retry."""

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            message=f"{resource} {resource_id} was modified concurrently, retry the request",
            details={"resource": resource, "id": resource_id, "retryable": True},
            error_code="ERR_CONFLICT_002"
        )


class AuthorizationError(AppException):
    """Raised when a contributor's reputation is below the gate for an action."""

    def __init__(self, message: str = "Insufficient reputation", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class AuthenticationError(AppException):
    """Raised when an action needs an identified contributor but none is present."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    level = logging.WARNING if isinstance(exc, (ConcurrentUpdateError, AuthorizationError)) else logging.INFO
    logger.log(
        level,
        "Request rejected",
        extra={"error_code": exc.error_code, "path": request.url.path, "detail": exc.message}
    )
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
                "errors": _jsonable_errors(exc)
            }
        }
    )


async def storage_exception_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    """Handler for transient storage faults (lock timeouts, dropped connections)."""
    logger.error(
        "Storage failure: %s", type(exc).__name__,
        extra={"path": request.url.path, "connection_invalidated": exc.connection_invalidated}
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error_code": "ERR_STORAGE_TRANSIENT",
            "message": "Storage temporarily unavailable, retry with backoff",
            "details": {"retryable": True}
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__, extra={"path": request.url.path})

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )


def _jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic puts the raw exception under "ctx" for custom validators
    errors = []
    for error in exc.errors():
        error = dict(error)
        ctx: Optional[dict] = error.get("ctx")
        if ctx:
            error["ctx"] = {key: str(value) for key, value in ctx.items()}
        errors.append(error)
    return errors
