"""
Custom Exceptions for QuantiPackAI

Hierarchical exception classes for proper error handling across layers.
"""

from typing import Optional, Dict, Any


class QuantiPackError(Exception):
    """Base exception for all QuantiPackAI errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(QuantiPackError):
    """Raised when input validation fails."""
    pass


class DatabaseError(QuantiPackError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class ConfigurationError(QuantiPackError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


class BillingNotConfiguredError(ConfigurationError):
    """Raised when a billing operation runs without Stripe credentials."""
    pass


class BillingProviderError(QuantiPackError):
    """Raised when Stripe rejects or fails a request."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details, original_error)


class WebhookSignatureError(QuantiPackError):
    """Raised when a webhook payload fails signature verification."""
    pass
