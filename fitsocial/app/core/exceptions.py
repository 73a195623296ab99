"""
Custom exceptions and error handlers for consistent error responses.

Every failure leaves the API in the same envelope:
{"success": false, "error": <code>, "message": <text>, "details": {...}}
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
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


class BadRequestError(AppException):
    """Raised when a request is missing data or carries invalid values."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_BAD_REQUEST",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class ConflictError(AppException):
    """Raised when an action was already performed (duplicate like, follow...)."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="ERR_DUPLICATE",
            status_code=status.HTTP_400_BAD_REQUEST
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


class TokenRevokedError(AppException):
    """Raised when token has been revoked."""

    def __init__(self):
        super().__init__(
            message="Token has been revoked",
            error_code="ERR_AUTH_002",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class ContentRejectedError(AppException):
    """Raised when user generated text trips the content filter."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            message="Your content contains language that violates our community guidelines. "
                    "Please revise and try again.",
            error_code="CONTENT_FILTERED",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"field": field, "reason": reason}
        )


class InvalidPushTokenError(AppException):
    """Raised when a device token is not a valid Expo push token."""

    def __init__(self, token: str):
        super().__init__(
            message="Invalid push token format",
            error_code="ERR_PUSH_TOKEN",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"token": token}
        )


def error_body(error_code: str, message: Any, details: Dict[str, Any] = None) -> Dict[str, Any]:
    return {
        "success": False,
        "error": error_code,
        "message": message,
        "details": details or {}
    }


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_body(exc.error_code, exc.message, exc.details))
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(error_code, exc.detail),
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors (missing or malformed fields)."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder(
            error_body("ERR_VALIDATION", "Validation error", {"errors": exc.errors()})
        )
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handler for database failures; the upstream message is surfaced to the caller."""
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("ERR_DATABASE", str(exc.__cause__ or exc))
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("ERR_INTERNAL_SERVER", str(exc) or "An internal server error occurred")
    )
