"""
Custom Exception Classes for ProjectShelf Analytics

Every error raised on purpose by the services derives from ShelfError and
carries an HTTP status code, a machine-readable error code and optional
details, so the exception handlers can render a consistent response.
"""

import enum
from typing import Any

from fastapi import status


class ErrorCode(str, enum.Enum):
    AUTH_FAILED = "AUTH_FAILED"
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_INVALID_PERIOD = "VALIDATION_INVALID_PERIOD"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_PROJECT_NOT_FOUND = "RESOURCE_PROJECT_NOT_FOUND"
    RESOURCE_USER_NOT_FOUND = "RESOURCE_USER_NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ShelfError(Exception):
    """Base exception class for all ProjectShelf errors"""

    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


# ============================================================================
# Authentication Exceptions
# ============================================================================


class AuthenticationError(ShelfError):
    """Raised when the bearer token is missing or does not resolve to a user"""

    error_code = ErrorCode.AUTH_FAILED

    def __init__(self, message: str = "Could not validate credentials", details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class InvalidTokenError(AuthenticationError):
    """Raised when a JWT cannot be decoded or has expired"""

    error_code = ErrorCode.AUTH_INVALID_TOKEN

    def __init__(self, message: str = "Invalid or malformed token"):
        super().__init__(message=message)


# ============================================================================
# Resource Not Found Exceptions
# ============================================================================


class NotFoundError(ShelfError):
    """Base class for subjects that do not exist"""

    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, resource_type: str, resource_id: Any | None = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class ProjectNotFoundError(NotFoundError):
    error_code = ErrorCode.RESOURCE_PROJECT_NOT_FOUND

    def __init__(self, project_id: Any | None = None):
        super().__init__(resource_type="Project", resource_id=project_id)


class UserNotFoundError(NotFoundError):
    error_code = ErrorCode.RESOURCE_USER_NOT_FOUND

    def __init__(self, user_id: Any | None = None):
        super().__init__(resource_type="User", resource_id=user_id)


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(ShelfError):
    """Raised when input is malformed; nothing is written"""

    error_code = ErrorCode.VALIDATION_FAILED

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode | None = None,
    ):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=error_details,
            error_code=error_code,
        )


class InvalidPeriodError(ValidationError):
    """Raised when a statistics period is not one of the supported values"""

    def __init__(self, period: Any, allowed: list[str]):
        super().__init__(
            message=f"Invalid period '{period}'. Expected one of: {', '.join(allowed)}",
            field="period",
            details={"value": period, "allowed": allowed},
            error_code=ErrorCode.VALIDATION_INVALID_PERIOD,
        )


# ============================================================================
# Storage Exceptions
# ============================================================================


class StorageError(ShelfError):
    """Raised when a persistence operation fails"""

    error_code = ErrorCode.STORAGE_ERROR

    def __init__(self, message: str = "A storage error occurred", operation: str | None = None):
        details = {"operation": operation} if operation else {}
        super().__init__(message=message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)
