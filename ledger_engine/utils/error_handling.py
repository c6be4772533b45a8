"""
Error Handling Module for Ledger Engine

This module provides centralized error handling with:
- Custom exception hierarchy for ledger operations
- Structured operation results returned by services
- Standardized error responses and FastAPI handlers
"""

from dataclasses import dataclass, field as dc_field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)

logger = logging.getLogger("ledger_engine.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""
    
    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNBALANCED_ENTRY = "UNBALANCED_ENTRY"
    
    # Resource Errors
    NOT_FOUND = "NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    UNPOSTED_ENTRIES = "UNPOSTED_ENTRIES"
    
    # State Errors
    INVALID_STATE = "INVALID_STATE"
    PERIOD_CLOSED = "PERIOD_CLOSED"
    ALREADY_CLOSED = "ALREADY_CLOSED"
    
    # Database Errors
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    
    # Internal Errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""
    
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Validation failure carrying every violated rule."""
    
    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        field: Optional[str] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        warnings: Optional[List[str]] = None,
    ):
        self.errors = list(errors or [])
        details: Dict[str, Any] = {}
        if self.errors:
            details["errors"] = self.errors
        if warnings:
            details["warnings"] = list(warnings)
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class UnbalancedEntryException(ValidationException):
    """Debits and credits of an entry do not agree."""
    
    def __init__(self, total_debit: Any, total_credit: Any, errors: Optional[List[str]] = None):
        super().__init__(
            message=f"Entry is not balanced: debits {total_debit} != credits {total_credit}",
            errors=errors,
            code=ErrorCode.UNBALANCED_ENTRY,
        )
        self.details["total_debit"] = str(total_debit)
        self.details["total_credit"] = str(total_credit)


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found"""
    
    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
    ):
        details = {"resource_type": resource_type}
        if resource_id:
            details["resource_id"] = str(resource_id)
        
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message or f"{resource_type} not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
        )


class ConflictException(AppException):
    """Request conflicts with the current state of other resources"""
    
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


# ============================================================================
# State Exceptions
# ============================================================================

class InvalidStateException(AppException):
    """Illegal transition for the resource's current status."""
    
    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        code: ErrorCode = ErrorCode.INVALID_STATE,
    ):
        details = {}
        if current_status:
            details["current_status"] = current_status
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class PeriodClosedException(InvalidStateException):
    """Covering fiscal period no longer accepts postings"""
    
    def __init__(self, period_name: str, operation: str = "posting"):
        super().__init__(
            message=f"Fiscal period '{period_name}' is closed. {operation.capitalize()} not allowed.",
            current_status="closed",
            code=ErrorCode.PERIOD_CLOSED,
        )
        self.details["period"] = period_name


class AlreadyClosedException(InvalidStateException):
    """Period or fiscal year was closed before"""
    
    def __init__(self, resource_type: str, name: str):
        super().__init__(
            message=f"{resource_type} '{name}' is already closed",
            current_status="closed",
            code=ErrorCode.ALREADY_CLOSED,
        )


# ============================================================================
# Database Exceptions
# ============================================================================

class DatabaseException(AppException):
    """Storage failure surfaced as a generic internal error"""
    
    def __init__(
        self,
        message: str = "An internal error occurred",
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            code=ErrorCode.INTERNAL_ERROR,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            original_error=original_error,
        )


# ============================================================================
# Operation Results
# ============================================================================

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """
    Outcome of a service operation.

    Services hand one of these back instead of raising across their
    transaction boundary. ``error`` keeps the exception that ended the
    operation so callers at the HTTP edge can re-raise it.
    """
    success: bool
    data: Optional[T] = None
    error: Optional[AppException] = None
    warnings: List[str] = dc_field(default_factory=list)
    
    @classmethod
    def ok(cls, data: Optional[T] = None, warnings: Optional[List[str]] = None) -> "OperationResult[T]":
        return cls(success=True, data=data, warnings=list(warnings or []))
    
    @classmethod
    def fail(cls, error: AppException) -> "OperationResult[T]":
        return cls(success=False, error=error)
    
    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None
    
    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None
    
    @property
    def errors(self) -> List[str]:
        """Every violation reported by a failed validation."""
        if isinstance(self.error, ValidationException):
            return self.error.errors
        return [self.error.message] if self.error else []
    
    def raise_for_error(self) -> Optional[T]:
        """Return the data, or raise the exception that failed the operation."""
        if self.error is not None:
            raise self.error
        return self.data


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create standardized error response"""
    content = {
        "success": False,
        "error": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    
    if field:
        content["error"]["field"] = field
    if details:
        content["error"]["details"] = details
    
    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=exc.original_error,
    )
    
    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.VALIDATION_ERROR,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
    }
    
    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    
    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )
    
    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request payload validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    
    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method},
    )
    
    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors escaping a request"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    
    if isinstance(exc, IntegrityError):
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    
    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )
    
    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )
    
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
