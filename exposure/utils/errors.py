"""Error handling utilities for the open exposure pipeline."""

from dataclasses import dataclass
from typing import Optional, Dict, Any
from enum import Enum


class ErrorType(Enum):
    """Enumeration of error types in the open exposure pipeline."""

    # Invariant violations
    PARTITION_MISMATCH = "PARTITION_MISMATCH"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    REVIEW_NOT_FOUND = "REVIEW_NOT_FOUND"

    # Backend errors
    BACKEND_QUERY_FAILED = "BACKEND_QUERY_FAILED"
    BACKEND_TIMEOUT = "BACKEND_TIMEOUT"
    BACKEND_RETRIES_EXHAUSTED = "BACKEND_RETRIES_EXHAUSTED"

    # Export errors
    RENDER_FAILED = "RENDER_FAILED"
    DELIVERY_FAILED = "DELIVERY_FAILED"

    # Configuration Errors
    CONFIG_MISSING = "CONFIG_MISSING"
    CONFIG_INVALID = "CONFIG_INVALID"


@dataclass
class ErrorContext:
    """
    Context information for errors in the open exposure pipeline.

    Attributes:
        error_type: Type of error from ErrorType enum
        message: Human-readable error message
        recoverable: Whether the error can be recovered from
        fallback_action: Optional description of fallback action taken
        details: Optional additional error details
        original_exception: Optional original exception that caused this error
    """

    error_type: ErrorType
    message: str
    recoverable: bool
    fallback_action: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    original_exception: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error context to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error context
        """
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "fallback_action": self.fallback_action,
            "details": self.details or {},
            "original_exception": str(self.original_exception) if self.original_exception else None
        }


class ExposureError(Exception):
    """
    Base exception for all open exposure pipeline errors.

    Wraps errors with additional context so callers get an actionable
    message naming the record, partition or transition that failed.

    Attributes:
        context: ErrorContext with detailed error information
    """

    def __init__(self, context: ErrorContext):
        """
        Initialize pipeline error.

        Args:
            context: ErrorContext with error details
        """
        self.context = context
        super().__init__(context.message)

    def __str__(self) -> str:
        """String representation of the error."""
        base = f"{self.context.error_type.value}: {self.context.message}"
        if self.context.fallback_action:
            base += f" (Fallback: {self.context.fallback_action})"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error
        """
        return self.context.to_dict()


class ReconciliationError(ExposureError):
    """A partition's child aggregates do not add up to the grand total."""

    @classmethod
    def partition_mismatch(
        cls,
        dimension: str,
        field_name: str,
        expected: Any,
        actual: Any
    ) -> "ReconciliationError":
        """
        Create error for a partition that does not reconcile with the total.

        Args:
            dimension: Partition dimension (e.g. "age_bucket")
            field_name: Summed field that disagrees (e.g. "count")
            expected: Grand-total value
            actual: Sum over the partition's children

        Returns:
            ReconciliationError instance
        """
        context = ErrorContext(
            error_type=ErrorType.PARTITION_MISMATCH,
            message=(
                f"Partition '{dimension}' does not reconcile on '{field_name}': "
                f"children sum to {actual}, total is {expected}"
            ),
            recoverable=False,
            details={
                "dimension": dimension,
                "field": field_name,
                "expected": str(expected),
                "actual": str(actual)
            }
        )
        return cls(context)


class InvalidTransitionError(ExposureError):
    """A review status transition was attempted from a state that forbids it."""

    @classmethod
    def for_item(
        cls,
        review_id: str,
        current_status: str,
        action: str
    ) -> "InvalidTransitionError":
        """
        Create error for a forbidden review transition.

        Args:
            review_id: Identifier of the review item
            current_status: Status the item is currently in
            action: Transition that was attempted

        Returns:
            InvalidTransitionError instance
        """
        context = ErrorContext(
            error_type=ErrorType.INVALID_TRANSITION,
            message=(
                f"Cannot '{action}' review {review_id}: "
                f"status '{current_status}' does not allow it"
            ),
            recoverable=False,
            details={
                "review_id": review_id,
                "current_status": current_status,
                "action": action
            }
        )
        return cls(context)


class ReviewNotFoundError(ExposureError):
    """The requested review item is not in the manager's view."""

    @classmethod
    def for_id(cls, review_id: str) -> "ReviewNotFoundError":
        context = ErrorContext(
            error_type=ErrorType.REVIEW_NOT_FOUND,
            message=f"Review {review_id} is not known to the workflow manager",
            recoverable=False,
            details={"review_id": review_id}
        )
        return cls(context)


class DependencyError(ExposureError):
    """Exception for row-store, change-feed, renderer and delivery failures."""

    @classmethod
    def timeout(
        cls,
        operation: str,
        timeout_seconds: float,
        error: Optional[Exception] = None
    ) -> "DependencyError":
        """
        Create error for an operation that exceeded its timeout.

        Args:
            operation: Description of operation that timed out
            timeout_seconds: Timeout that was applied
            error: Optional original exception

        Returns:
            DependencyError instance
        """
        context = ErrorContext(
            error_type=ErrorType.BACKEND_TIMEOUT,
            message=f"{operation} timed out after {timeout_seconds}s",
            recoverable=True,
            fallback_action="Retry with backoff",
            details={"operation": operation, "timeout_seconds": timeout_seconds},
            original_exception=error
        )
        return cls(context)

    @classmethod
    def retries_exhausted(
        cls,
        operation: str,
        attempts: int,
        error: Optional[Exception] = None
    ) -> "DependencyError":
        """
        Create error for an operation that failed on every attempt.

        Args:
            operation: Description of operation that failed
            attempts: Number of attempts made
            error: Last exception seen

        Returns:
            DependencyError instance
        """
        context = ErrorContext(
            error_type=ErrorType.BACKEND_RETRIES_EXHAUSTED,
            message=f"{operation} failed after {attempts} attempts: {error}",
            recoverable=False,
            details={"operation": operation, "attempts": attempts},
            original_exception=error
        )
        return cls(context)

    @classmethod
    def query_failed(
        cls,
        table: str,
        operation: str,
        error: Exception
    ) -> "DependencyError":
        """
        Create error for a failed row-store call.

        Args:
            table: Table the call targeted
            operation: select/insert/update
            error: Original exception

        Returns:
            DependencyError instance
        """
        context = ErrorContext(
            error_type=ErrorType.BACKEND_QUERY_FAILED,
            message=f"{operation} on '{table}' failed: {error}",
            recoverable=True,
            fallback_action="Retry with backoff",
            details={"table": table, "operation": operation},
            original_exception=error
        )
        return cls(context)

    @classmethod
    def render_failed(cls, renderer: str, message: str) -> "DependencyError":
        context = ErrorContext(
            error_type=ErrorType.RENDER_FAILED,
            message=f"Renderer '{renderer}' failed: {message}",
            recoverable=True,
            fallback_action="Retry with backoff",
            details={"renderer": renderer}
        )
        return cls(context)

    @classmethod
    def delivery_failed(cls, destination: str, message: str) -> "DependencyError":
        context = ErrorContext(
            error_type=ErrorType.DELIVERY_FAILED,
            message=f"Delivery to '{destination}' failed: {message}",
            recoverable=True,
            fallback_action="Retry with backoff",
            details={"destination": destination}
        )
        return cls(context)


class ConfigError(ExposureError):
    """Exception for missing or invalid configuration."""

    @classmethod
    def invalid(cls, key: str, value: Any, reason: str) -> "ConfigError":
        context = ErrorContext(
            error_type=ErrorType.CONFIG_INVALID,
            message=f"Invalid configuration value for '{key}': {value!r} ({reason})",
            recoverable=False,
            details={"key": key}
        )
        return cls(context)


def is_retryable(error: Exception) -> bool:
    """
    Determine if an error is worth retrying.

    Invariant violations and configuration errors are never retried;
    dependency errors follow their recoverable flag; anything else raised
    by an external collaborator is treated as transient.

    Args:
        error: Exception raised by the attempted operation

    Returns:
        True if error is retryable, False otherwise
    """
    if isinstance(error, (ReconciliationError, InvalidTransitionError, ReviewNotFoundError, ConfigError)):
        return False
    if isinstance(error, ExposureError):
        return error.context.recoverable
    return True
