"""
Centralized error types and constants for the push server.

Standardized error types keep the JSON bodies of rejected requests
consistent across the router.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Standardized error types for consistent categorization."""

    # Resource Errors
    RESOURCE_NOT_FOUND = "resource_not_found"
    HANDLER_NOT_FOUND = "handler_not_found"
    CONNECTION_NOT_FOUND = "connection_not_found"

    # Request Errors
    METHOD_NOT_ALLOWED = "method_not_allowed"

    # Rate Limiting
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"

    # System
    SERVICE_UNAVAILABLE = "service_unavailable"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorMessages:
    """Standard messages used in rejection bodies."""

    HANDLER_NOT_FOUND = "Handler not found"
    NOT_FOUND = "Not found"
    METHOD_NOT_ALLOWED = "Method not allowed"
    TOO_MANY_CONNECTIONS = "Too many connections"
    CONNECTION_NOT_FOUND = "Connection not found"
    SHUTTING_DOWN = "Server is shutting down"


def create_standard_error_response(
    error_type: ErrorType,
    message: str,
    user_friendly: str | None = None,
    details: dict[str, Any] | None = None,
    severity: ErrorSeverity = ErrorSeverity.MEDIUM,
) -> dict[str, Any]:
    """
    Create a standardized error response.

    Args:
        error_type: The type of error
        message: Technical error message
        user_friendly: User-friendly error message (optional)
        details: Additional error details (optional)
        severity: Error severity level (optional)

    Returns:
        Standardized error response dictionary
    """
    return {
        "error": {
            "type": error_type.value,
            "message": message,
            "user_friendly": user_friendly or message,
            "details": details or {},
            "severity": severity.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    }
