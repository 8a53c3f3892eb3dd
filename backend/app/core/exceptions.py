"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List
import logging

logger = logging.getLogger("troop_treasury")


class AppException(Exception):
    """Base application exception."""
    
    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppException):
    """
    Raised when the role/ownership check fails.
    
    The message is deliberately generic: it must not reveal whether the
    resource exists or what it holds.
    """
    
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN
        )


class ValidationError(AppException):
    """Raised for malformed or out-of-range input. Carries field-keyed issues."""
    
    def __init__(self, message: str = "Invalid fields", issues: Dict[str, List[str]] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"issues": issues or {}}
        )
    
    @classmethod
    def for_field(cls, field: str, problem: str) -> "ValidationError":
        return cls(message=problem, issues={field: [problem]})


class InsufficientFundsError(AppException):
    """Raised when an IBA balance cannot cover the required amount."""
    
    def __init__(self, message: str, account: str = None):
        super().__init__(
            message=message,
            error_code="ERR_FUNDS_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"account": account} if account else {}
        )


class InvalidStateError(AppException):
    """Raised when an operation does not fit the current lifecycle state."""
    
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
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


class ConflictError(AppException):
    """Raised for duplicate registrations and links."""
    
    def __init__(self, message: str, error_code: str = "ERR_CONFLICT_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT
        )


class ConcurrencyConflictError(ConflictError):
    """Raised when a balance row changed under us (version mismatch)."""
    
    def __init__(self, message: str = "The account was updated by another request. Please retry."):
        super().__init__(message=message, error_code="ERR_CONFLICT_002")


class AuthenticationError(AppException):
    """Raised for authentication failures."""
    
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


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
    """Handler for Pydantic validation errors, keyed by field for form re-rendering."""
    issues: Dict[str, List[str]] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "__root__"
        issues.setdefault(field, []).append(error.get("msg", "Invalid value"))
    
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Invalid fields",
            "details": {
                "issues": issues
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)
    
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
