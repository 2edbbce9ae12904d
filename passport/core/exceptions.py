"""
Infrastructure exceptions for the Passport engine.

Purpose
-------
Structured exception hierarchy for technical failures that sit below the
gamification domain: configuration mistakes, database or Redis outages and
per-subject lock acquisition failures.

Design Notes
------------
- Every infrastructure exception inherits from `PassportInfrastructureException`
  and carries `message`, `details`, `severity`, `is_retryable` and `error_code`.
- Domain rule violations (unknown quest, duplicate grant) live in
  `passport.modules.shared.exceptions`; nothing here knows about badges.
- `is_transient_error`, `get_error_severity` and `should_alert` accept any
  exception, so callers can classify both hierarchies uniformly.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected (duplicate grant races)
    INFO = "info"  # Normal operation (validation failures)
    WARNING = "warning"  # Handled but worth a look (lock wait timeouts)
    ERROR = "error"  # Unexpected, needs attention
    CRITICAL = "critical"  # System cannot operate


class PassportInfrastructureException(Exception):
    """
    Base exception for infrastructure-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


class ConfigurationError(PassportInfrastructureException):
    """
    Raised when a required configuration key is missing or malformed.

    Args:
        config_key: The configuration key that has issues
        message: Description of the configuration problem
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class DatabaseError(PassportInfrastructureException):
    """
    Raised when a store operation fails at the database layer.

    Args:
        operation: Store operation that failed (e.g. "fetch_active_rules")
        original_error: The underlying driver or SQLAlchemy exception
    """

    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Database error during {operation}: {original_error}",
            details={
                "operation": operation,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code="DATABASE_ERROR",
        )


class RedisConnectionError(PassportInfrastructureException):
    """
    Raised when Redis is unreachable or a Redis command fails.

    Args:
        operation: Description of the Redis operation that failed
        original_error: The underlying Redis exception
    """

    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Redis error during {operation}: {original_error}",
            details={
                "operation": operation,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code="REDIS_ERROR",
        )


class SubjectLockError(PassportInfrastructureException):
    """
    Raised when the per-subject lock cannot be acquired in time.

    Args:
        subject_id: Subject whose evaluations are being serialized
        wait_seconds: How long the caller waited before giving up
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, subject_id: str, wait_seconds: float) -> None:
        self.subject_id = subject_id
        self.wait_seconds = wait_seconds
        super().__init__(
            f"Could not acquire lock for subject {subject_id} "
            f"within {wait_seconds:.1f}s",
            details={"subject_id": subject_id, "wait_seconds": wait_seconds},
            error_code="SUBJECT_LOCK_TIMEOUT",
        )


# Utility functions for exception handling patterns


def is_transient_error(exc: Exception) -> bool:
    """True when the exception advertises itself as retryable."""
    return bool(getattr(exc, "is_retryable", False))


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Severity for logging; unknown exceptions default to ERROR."""
    severity = getattr(exc, "severity", None)
    if isinstance(severity, ErrorSeverity):
        return severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """True if severity is ERROR or CRITICAL."""
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
