"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
The same envelope is used for REST responses and WebSocket error events.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class TrackingValidationError(AppException):
    """Raised when a position report is malformed (rejected before any write)."""

    def __init__(self, message: str, details: Dict[str, Any] = None, error_code: str = "ERR_VALIDATION_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class InvalidCoordinateError(TrackingValidationError):
    """Raised when latitude/longitude fall outside valid ranges."""

    def __init__(self, latitude: Any, longitude: Any):
        super().__init__(
            message="Latitude must be within [-90, 90] and longitude within [-180, 180]",
            error_code="ERR_VALIDATION_COORD",
            # NaN/inf are not valid JSON
            details={"latitude": str(latitude), "longitude": str(longitude)}
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


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class StoreUnavailableError(AppException):
    """
    Raised when the position store cannot complete a read or write.

    Retryable from the client's point of view; the server never retries.
    """

    def __init__(self, operation: str, reason: str = ""):
        super().__init__(
            message=f"Position store unavailable during {operation}",
            error_code="ERR_STORE_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation, "reason": reason, "retryable": True}
        )


class SubscriptionDroppedError(AppException):
    """Raised when a viewer fell behind before its live subscription started."""

    def __init__(self, vehicle_id: int, reason: str):
        super().__init__(
            message="Live updates for this vehicle were dropped; join again",
            error_code="ERR_SUBSCRIPTION_DROPPED",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"vehicle_id": vehicle_id, "reason": reason, "retryable": True}
        )


class RoutingUnavailableError(AppException):
    """Raised when the routing collaborator cannot produce a reference path."""

    def __init__(self, reason: str = ""):
        super().__init__(
            message="Routing service unavailable",
            error_code="ERR_ROUTING_UNAVAILABLE",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"reason": reason}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if exc.status_code >= 500:
        logger.warning("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_envelope()
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
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.error("Unhandled exception: %s: %s", type(exc).__name__, exc, exc_info=exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
