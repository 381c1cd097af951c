"""
Custom exception classes for the Dispute Desk service layer.

This module defines the exception hierarchy used by repositories and services:
- Domain-specific exceptions for cases and messages
- HTTP status code mapping for the transport boundary
- Structured error information with context
- Exception chaining for debugging
"""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """
    Standardized error codes for the dispute resolution system.

    These codes provide consistent error identification across the service
    layer and let the transport boundary produce structured error bodies.
    """

    # Configuration Errors (1xxx)
    CONFIG_VALIDATION_FAILED = "1001"
    CONFIG_INVALID_VALUE = "1004"

    # Database Errors (2xxx)
    DATABASE_CONNECTION_ERROR = "2001"
    DATABASE_OPERATION_FAILED = "2002"
    DATABASE_CONSTRAINT_VIOLATION = "2003"

    # Case Management Errors (4xxx)
    CASE_NOT_FOUND = "4001"
    CASE_ACCESS_DENIED = "4002"
    CASE_INVALID_STATE = "4004"
    CASE_DUPLICATE_ID = "4005"

    # Message Errors (5xxx)
    MESSAGE_NOT_FOUND = "5001"

    # Validation Errors (6xxx)
    VALIDATION_FAILED = "6001"

    # Authorization Errors (8xxx)
    ACCESS_DENIED = "8101"
    PERMISSION_INSUFFICIENT = "8102"


class BaseCustomException(Exception):
    """
    Base exception class for all custom exceptions in the system.

    Provides common functionality for error tracking, context preservation,
    and structured error information.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: Optional[Dict[str, Any]] = None,
        http_status_code: int = 500,
        correlation_id: Optional[str] = None,
        user_message: Optional[str] = None
    ):
        """
        Initialize base exception with structured error information.

        Args:
            message: Technical error message for developers
            error_code: Standardized error code for identification
            details: Additional context and debugging information
            http_status_code: HTTP status code for API responses
            correlation_id: Request correlation ID for tracking
            user_message: User-friendly error message for display
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.http_status_code = http_status_code
        self.correlation_id = correlation_id
        self.user_message = user_message or self._generate_user_message()
        self.traceback_info = traceback.format_exc()

    def _generate_user_message(self) -> str:
        """Generate a user-friendly error message based on the error code."""
        user_messages = {
            ErrorCode.DATABASE_CONNECTION_ERROR: "Unable to connect to the database. Please try again later.",
            ErrorCode.CASE_NOT_FOUND: "The requested case could not be found.",
            ErrorCode.CASE_ACCESS_DENIED: "You do not have access to this case.",
            ErrorCode.CASE_INVALID_STATE: "The case is not in a state that allows this action.",
            ErrorCode.MESSAGE_NOT_FOUND: "The requested message could not be found.",
            ErrorCode.VALIDATION_FAILED: "The submitted data is invalid.",
            ErrorCode.ACCESS_DENIED: "You do not have permission to perform this action.",
        }
        return user_messages.get(self.error_code, "An unexpected error occurred. Please contact support.")

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "http_status_code": self.http_status_code,
            "correlation_id": self.correlation_id,
        }

    def add_context(self, key: str, value: Any) -> None:
        """Add additional context to the exception details."""
        self.details[key] = value

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class ConfigurationError(BaseCustomException):
    """Exception raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_FAILED,
        config_section: Optional[str] = None,
        config_key: Optional[str] = None,
        **kwargs
    ):
        details = {
            "config_section": config_section,
            "config_key": config_key,
        }
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=400,
            **kwargs
        )


class DatabaseError(BaseCustomException):
    """Exception raised for database-related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_OPERATION_FAILED,
        database_type: Optional[str] = None,
        collection_name: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None,
        **kwargs
    ):
        details = {
            "database_type": database_type,
            "collection_name": collection_name,
            "operation": operation,
            "original_error": original_error,
        }
        status_map = {
            ErrorCode.DATABASE_CONSTRAINT_VIOLATION: 409,
        }
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=status_map.get(error_code, 500),
            **kwargs
        )


class CaseManagementError(BaseCustomException):
    """Exception raised for case management errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CASE_NOT_FOUND,
        case_id: Optional[str] = None,
        user_id: Optional[str] = None,
        current_status: Optional[str] = None,
        **kwargs
    ):
        details = {
            "case_id": case_id,
            "user_id": user_id,
            "current_status": current_status,
        }

        status_map = {
            ErrorCode.CASE_NOT_FOUND: 404,
            ErrorCode.CASE_ACCESS_DENIED: 403,
            ErrorCode.CASE_INVALID_STATE: 409,
            ErrorCode.CASE_DUPLICATE_ID: 409,
        }

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=status_map.get(error_code, 400),
            **kwargs
        )


class MessageError(BaseCustomException):
    """Exception raised for message delivery errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.MESSAGE_NOT_FOUND,
        message_id: Optional[str] = None,
        case_id: Optional[str] = None,
        user_id: Optional[str] = None,
        **kwargs
    ):
        details = {
            "message_id": message_id,
            "case_id": case_id,
            "user_id": user_id,
        }

        status_map = {
            ErrorCode.MESSAGE_NOT_FOUND: 404,
        }

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=status_map.get(error_code, 400),
            **kwargs
        )


class AccessError(BaseCustomException):
    """Exception raised for access control and permission errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.ACCESS_DENIED,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        required_permission: Optional[str] = None,
        **kwargs
    ):
        details = {
            "user_id": user_id,
            "role": role,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "required_permission": required_permission,
        }
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=403,
            **kwargs
        )


class ValidationError(BaseCustomException):
    """Exception raised for data validation errors."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ):
        details = {
            "field_errors": field_errors or [],
        }
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_FAILED,
            details=details,
            http_status_code=422,
            **kwargs
        )

    @property
    def field_errors(self) -> List[Dict[str, Any]]:
        return self.details["field_errors"]


def get_exception_response_data(exception: BaseCustomException) -> Dict[str, Any]:
    """
    Extract response data from a custom exception for API responses.

    Args:
        exception: Custom exception instance

    Returns:
        Dictionary containing structured error data
    """
    return {
        "success": False,
        "error": {
            "code": exception.error_code.value,
            "message": exception.user_message,
            "details": exception.details,
        },
        "status_code": exception.http_status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "correlation_id": exception.correlation_id,
    }


# Convenience functions for common exception patterns

def raise_database_error(
    message: str,
    database_type: Optional[str] = "mongodb",
    collection_name: Optional[str] = None,
    operation: Optional[str] = None,
    original_error: Optional[Exception] = None,
    error_code: ErrorCode = ErrorCode.DATABASE_OPERATION_FAILED
) -> None:
    """Raise a database error with context."""
    raise DatabaseError(
        message=message,
        error_code=error_code,
        database_type=database_type,
        collection_name=collection_name,
        operation=operation,
        original_error=str(original_error) if original_error is not None else None
    ) from original_error


def raise_case_error(
    message: str,
    case_id: Optional[str] = None,
    user_id: Optional[str] = None,
    error_code: ErrorCode = ErrorCode.CASE_NOT_FOUND,
    current_status: Optional[str] = None
) -> None:
    """Raise a case management error with context."""
    raise CaseManagementError(
        message=message,
        error_code=error_code,
        case_id=case_id,
        user_id=user_id,
        current_status=current_status
    )


def raise_case_not_found(case_id: str, user_id: Optional[str] = None) -> None:
    """Raise a case not found error."""
    raise_case_error(
        message=f"Case '{case_id}' not found",
        case_id=case_id,
        user_id=user_id,
        error_code=ErrorCode.CASE_NOT_FOUND
    )


def raise_invalid_case_state(case_id: str, current_status: str, action: str) -> None:
    """Raise an error for an action the case state machine does not allow."""
    raise_case_error(
        message=f"Cannot {action} case '{case_id}' in status '{current_status}'",
        case_id=case_id,
        error_code=ErrorCode.CASE_INVALID_STATE,
        current_status=current_status
    )


def raise_message_not_found(message_id: str, user_id: Optional[str] = None) -> None:
    """Raise a message not found error."""
    raise MessageError(
        message=f"Message '{message_id}' not found",
        error_code=ErrorCode.MESSAGE_NOT_FOUND,
        message_id=message_id,
        user_id=user_id
    )


def raise_access_error(
    message: str,
    user_id: Optional[str] = None,
    role: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    required_permission: Optional[str] = None,
    error_code: ErrorCode = ErrorCode.ACCESS_DENIED
) -> None:
    """Raise an access control error with context."""
    raise AccessError(
        message=message,
        error_code=error_code,
        user_id=user_id,
        role=role,
        resource_type=resource_type,
        resource_id=resource_id,
        required_permission=required_permission
    )


def raise_validation_error(
    message: str,
    field_errors: Optional[List[Dict[str, Any]]] = None
) -> None:
    """Raise a validation error."""
    raise ValidationError(message=message, field_errors=field_errors)


def field_errors_from_pydantic(error: Any) -> List[Dict[str, Any]]:
    """
    Flatten a pydantic ValidationError into field error dictionaries.

    Args:
        error: pydantic.ValidationError instance

    Returns:
        List of {"field", "message", "type"} dictionaries
    """
    return [
        {
            "field": ".".join(str(part) for part in item.get("loc", ())),
            "message": item.get("msg", ""),
            "type": item.get("type", ""),
        }
        for item in error.errors()
    ]
