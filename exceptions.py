"""
Unified exception hierarchy for the budget-tracker project.

This module defines the exception hierarchy with BudgetTrackerError as the
base exception. Every error carries a human-readable message, optional
context details, and an ``http_status`` hint so transport layers can map
failures without inspecting messages.
"""

from typing import Any, Optional


class BudgetTrackerError(Exception):
    """
    Base exception class for all budget-tracker errors.

    All custom exceptions in the application should inherit from this class
    to enable unified error handling and consistent error messages.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
        original_error: Optional original exception that caused this error
        http_status: Transport-equivalent status code for this error class
    """

    http_status = 500

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        """
        Initialize BudgetTrackerError.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({detail_str})"
        return msg


class ConfigError(BudgetTrackerError):
    """Raised when configuration loading or validation fails."""
    pass


class ValidationError(BudgetTrackerError):
    """
    Raised when caller input is malformed.

    Never retried automatically. ``field`` names the offending input so it
    can be reported next to the form field that produced it.
    """

    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        super().__init__(message, details=details, original_error=original_error)
        self.field = field


class NotFoundError(BudgetTrackerError):
    """Raised when a referenced category, expense, template or list does not exist."""

    http_status = 404

    def __init__(self, entity: str, entity_id: Any, details: Optional[dict] = None) -> None:
        details = dict(details or {})
        details.setdefault("id", entity_id)
        super().__init__(f"{entity} not found", details=details)
        self.entity = entity
        self.entity_id = entity_id


class InsufficientFundsError(BudgetTrackerError):
    """Raised when a budget transfer would drive the source category below zero."""

    http_status = 400


class DatabaseError(BudgetTrackerError):
    """Raised when database operations fail."""
    pass


class ConcurrencyConflictError(DatabaseError):
    """
    Raised when a transaction loses a race (lock timeout, serialization
    failure, unique-key collision).

    Transient: the whole operation may be retried.
    """

    http_status = 503


class StorageUnavailableError(DatabaseError):
    """Raised when the underlying store cannot be reached."""

    http_status = 503
