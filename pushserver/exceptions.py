"""
Exception hierarchy for the push server.

Every error carries an ErrorContext describing where it happened (handler,
route, connection, client address, operation) so that a single log line is
enough to diagnose it.
"""

import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """
    Contextual information for error handling.

    Provides structured context for error reporting and debugging.
    """

    handler: str | None = None
    route: str | None = None
    connection_id: str | None = None
    client_address: str | None = None
    operation: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "handler": self.handler,
            "route": self.route,
            "connection_id": self.connection_id,
            "client_address": self.client_address,
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class PushServerError(Exception):
    """
    Base exception for all push server errors.

    Provides structured error handling with context and metadata
    for proper error categorization and debugging.
    """

    log_level = "error"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        """
        Initialize push server error.

        Args:
            message: Technical error message
            context: Error context information
            details: Additional error details
            user_friendly: User-friendly error message
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now()

        self._log_error()
        self.already_logged = True

    def _log_error(self):
        """Log the error with structured context."""
        log_data = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }
        getattr(logger, self.log_level)("Push server error occurred", **log_data)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class DuplicateHandlerNameError(PushServerError):
    """A handler is already registered under the requested name."""

    def __init__(self, name: str, context: ErrorContext | None = None, **kwargs):
        super().__init__(f"Handler '{name}' is already registered", context, **kwargs)
        self.name = name
        self.details["handler_name"] = name


class InvalidHandlerNameError(PushServerError):
    """A handler name cannot be used as a channel key or URL segment."""

    def __init__(self, name: str, context: ErrorContext | None = None, **kwargs):
        super().__init__(
            f"Handler name '{name}' must be non-empty and contain neither ':' nor '/'", context, **kwargs
        )
        self.name = name
        self.details["handler_name"] = name


class HandlerCapabilityError(PushServerError):
    """A provider does not implement the handler capability set."""

    def __init__(self, message: str, context: ErrorContext | None = None, provider: Any = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.provider = provider
        if provider is not None:
            self.details["provider"] = getattr(provider, "__name__", type(provider).__name__)


class HandlerNotFoundError(PushServerError):
    """No handler is registered under the requested name."""

    log_level = "warning"

    def __init__(self, name: str, context: ErrorContext | None = None, **kwargs):
        super().__init__(f"Handler '{name}' not found", context, **kwargs)
        self.name = name
        self.details["handler_name"] = name


class ResourceNotFoundError(PushServerError):
    """No route or connection matches the request."""

    log_level = "warning"


class ConnectionNotFoundError(ResourceNotFoundError):
    """No open stream has the requested connection id."""

    def __init__(self, connection_id: str, context: ErrorContext | None = None, **kwargs):
        super().__init__(f"Connection '{connection_id}' not found", context, **kwargs)
        self.connection_id = connection_id
        self.details["connection_id"] = connection_id


class RateLimitError(PushServerError):
    """Rate limiting errors."""

    log_level = "warning"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        limit_type: str = "connections_per_address",
        limit: int | None = None,
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.limit_type = limit_type
        self.limit = limit
        self.details["limit_type"] = limit_type
        if limit is not None:
            self.details["limit"] = limit


class MethodNotAllowedError(PushServerError):
    """Request method not supported on this path."""

    log_level = "warning"

    def __init__(self, method: str, context: ErrorContext | None = None, **kwargs):
        super().__init__(f"Method {method} not allowed", context, **kwargs)
        self.method = method
        self.details["method"] = method


class MalformedNotifyBodyError(PushServerError):
    """Notify body could not be parsed; callers fall back to defaults."""

    log_level = "warning"


class HandlerRuntimeError(PushServerError):
    """An exception raised inside a handler capability call."""

    def __init__(self, message: str, context: ErrorContext | None = None, original: BaseException | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.original = original
        if original is not None:
            self.details["original_type"] = type(original).__name__
            self.details["original_error"] = str(original)


class ConfigurationError(PushServerError):
    """Configuration and setup errors."""

    def __init__(self, message: str, context: ErrorContext | None = None, config_key: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key


class ServerShuttingDownError(PushServerError):
    """New streams are refused once shutdown has begun."""

    log_level = "info"


def wrap_handler_exception(exc: BaseException, context: ErrorContext) -> HandlerRuntimeError:
    """
    Convert an exception thrown by a handler into a HandlerRuntimeError.

    Args:
        exc: The original exception
        context: Where the handler was called from

    Returns:
        HandlerRuntimeError instance (logged on construction)
    """
    if isinstance(exc, HandlerRuntimeError):
        return exc
    return HandlerRuntimeError(
        f"Handler '{context.handler}' failed during {context.operation}: {exc}",
        context,
        original=exc,
        details={"traceback": traceback.format_exc()},
    )
