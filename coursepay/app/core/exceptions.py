"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
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


class BadRequestError(AppException):
    """Raised for malformed input that passed schema validation."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_BAD_REQUEST",
            status_code=status.HTTP_400_BAD_REQUEST,
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


class SignatureInvalidError(AppException):
    """Raised when a gateway callback fails HMAC verification."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(
            message=message,
            error_code="ERR_PAY_SIGNATURE",
            status_code=status.HTTP_400_BAD_REQUEST
        )


class AmountMismatchError(AppException):
    """Raised when the callback amount differs from the stored transaction amount."""

    def __init__(self, expected: Any, received: Any):
        super().__init__(
            message="Callback amount does not match transaction amount",
            error_code="ERR_PAY_AMOUNT",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"expected": str(expected), "received": str(received)}
        )


class InvalidStateError(AppException):
    """Raised when an entity is not in a state that allows the operation."""

    def __init__(self, message: str, error_code: str = "ERR_STATE_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class AlreadyGeneratedError(InvalidStateError):
    """Raised when settlement batches already exist for a month."""

    def __init__(self, month: str):
        super().__init__(
            message=f"Payroll already generated for {month}",
            error_code="ERR_SETTLEMENT_EXISTS",
            details={"month": month}
        )


class AlreadyPaidError(InvalidStateError):
    """Raised when marking a paid settlement batch as paid again."""

    def __init__(self, batch_id: int):
        super().__init__(
            message="Batch already marked as paid",
            error_code="ERR_SETTLEMENT_PAID",
            details={"batch_id": batch_id}
        )


class ConfigurationError(AppException):
    """Raised at startup when required merchant configuration is missing."""

    def __init__(self, missing: list):
        super().__init__(
            message=f"Missing payment configuration: {', '.join(missing)}",
            error_code="ERR_CONFIG",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"missing": missing}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.error_code, exc.message)
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
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
