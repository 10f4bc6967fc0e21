"""
Centralized Exceptions
Error taxonomy for registration, feed and delivery failures.
"""

from typing import Dict, Any, Optional
from fastapi import HTTPException, status


class TicksServiceError(Exception):
    """Base exception for the ticks service."""

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(TicksServiceError):
    """Join/leave request rejected before reaching a sentry."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class CatalogError(TicksServiceError):
    """Catalog service could not answer an instrument lookup."""

    def __init__(self, message: str = "Catalog lookup failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CATALOG_ERROR", details)


class DeliveryError(TicksServiceError):
    """A single callback invocation failed."""

    def __init__(self, message: str = "Delivery failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DELIVERY_ERROR", details)


class DeliveryTimeoutError(DeliveryError):
    """A callback invocation exceeded its execution deadline."""

    def __init__(self, message: str = "Delivery timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.error_code = "DELIVERY_TIMEOUT"


class ListenerStoppedError(TicksServiceError):
    """Upstream feed closed on its own."""

    def __init__(self, message: str = "listener stopped", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LISTENER_STOPPED", details)


class FeedStalledError(ListenerStoppedError):
    """Feed stopped heartbeating without closing."""

    def __init__(self, message: str = "feed stalled", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.error_code = "FEED_STALLED"


class SentryUnreachableError(TicksServiceError):
    """Message addressed to a sentry that is no longer running."""

    def __init__(self, message: str = "Sentry is not running", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SENTRY_UNREACHABLE", details)


class ConfigurationError(TicksServiceError):
    """Configuration error."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


# Error mapping to HTTP responses
ERROR_TO_HTTP_STATUS = {
    ValidationError: 422,
    CatalogError: status.HTTP_503_SERVICE_UNAVAILABLE,
    SentryUnreachableError: status.HTTP_409_CONFLICT,
    DeliveryError: status.HTTP_502_BAD_GATEWAY,
    DeliveryTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    ListenerStoppedError: status.HTTP_503_SERVICE_UNAVAILABLE,
    FeedStalledError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def create_http_exception(error: TicksServiceError) -> HTTPException:
    """Convert TicksServiceError to HTTPException with proper status code."""
    status_code = ERROR_TO_HTTP_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.error_code,
            "message": error.message,
            "details": error.details
        }
    )


def sanitize_error_message(message: str) -> str:
    """Sanitize error messages to prevent information leakage."""
    sensitive_patterns = [
        "password", "secret", "key", "token", "private",
        "api_key", "access_token", "refresh_token"
    ]

    sanitized = message
    for pattern in sensitive_patterns:
        if pattern.lower() in sanitized.lower():
            sanitized = sanitized.replace(pattern, "***")

    return sanitized
