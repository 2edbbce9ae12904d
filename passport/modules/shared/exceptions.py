"""
Domain exceptions for the Passport gamification engine.

Purpose
-------
Structured exceptions raised by services for rule violations and expected
domain conflicts. Callers at the edge (the activity listener, an HTTP layer
in the host application) translate these into responses.

Design Notes
------------
- All domain exceptions inherit from `PassportDomainException` and share the
  `message` / `details` / `severity` / `is_retryable` / `error_code` shape of
  the infrastructure hierarchy in `passport.core.exceptions`.
- `GrantConflictError` and `QuestStateConflictError` are expected control
  flow under concurrency: a uniqueness or optimistic-guard loss means another
  evaluation already did the work. They are logged at DEBUG and never
  surface from `GamificationEngine.process`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from passport.core.exceptions import ErrorSeverity


class PassportDomainException(Exception):
    """
    Base exception for all domain-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling

    Example:
        >>> raise PassportDomainException(
        ...     "Quest cannot be started",
        ...     {"quest_id": 7}
        ... )
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


class NotFoundError(PassportDomainException):
    """
    Raised when a catalog entry (badge, quest, achievement) does not exist.

    Args:
        resource_type: Type of resource (e.g., "Quest", "Badge")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ValidationError(PassportDomainException):
    """
    Raised when an argument fails domain validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class InvalidOperationError(PassportDomainException):
    """
    Raised when an action is not allowed in the current state.

    Args:
        action: Description of the invalid action
        reason: Explanation of why it's not allowed

    Example:
        >>> raise InvalidOperationError("start_quest", "Quest is not active")
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Invalid operation '{action}': {reason}",
            details={"action": action, "reason": reason},
            error_code=f"INVALID_{action.upper()}",
        )


class GrantConflictError(PassportDomainException):
    """
    Raised when a badge or achievement grant loses a uniqueness race.

    The enclosing unit of work rolls back, so rewards paired with the grant
    are not applied twice.

    Args:
        kind: "badge" or "achievement"
        subject_id: Subject the grant was for
        target_id: Badge or achievement id
    """

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG

    def __init__(self, kind: str, subject_id: str, target_id: int) -> None:
        self.kind = kind
        self.subject_id = subject_id
        self.target_id = target_id
        super().__init__(
            f"{kind.capitalize()} {target_id} already granted to {subject_id}",
            details={"kind": kind, "subject_id": subject_id, "target_id": target_id},
            error_code=f"{kind.upper()}_ALREADY_GRANTED",
        )


class QuestStateConflictError(PassportDomainException):
    """
    Raised when a quest progress write finds the row changed underneath it.

    Args:
        subject_id: Subject owning the progress row
        quest_id: Quest the progress belongs to
        expected_step: Step index the writer read before advancing
    """

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG
    DEFAULT_RETRYABLE = True

    def __init__(self, subject_id: str, quest_id: int, expected_step: int) -> None:
        self.subject_id = subject_id
        self.quest_id = quest_id
        self.expected_step = expected_step
        super().__init__(
            f"Quest {quest_id} progress for {subject_id} changed concurrently",
            details={
                "subject_id": subject_id,
                "quest_id": quest_id,
                "expected_step": expected_step,
            },
            error_code="QUEST_STATE_CONFLICT",
        )
