"""
Base Service Foundation

Purpose
-------
Foundation class for Passport domain services. Services implement the
gamification logic, own their units of work and publish domain events.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access (`get_config`, required keys raise ConfigurationError)
- Event emission helpers (`emit_event`)
- Argument validation that raises domain ValidationError

What this class does NOT do:
- Open database transactions (that's the store's job)
- Know about any specific table or rule shape

Usage
-----
    class QuestService(BaseService):
        def __init__(self, store, config_manager, event_bus, logger):
            super().__init__(config_manager, event_bus, logger)
            self._store = store
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from passport.core.exceptions import is_transient_error, should_alert

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager
    from passport.core.event.bus import EventBus


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Tunable configuration (ConfigManager or a test double)
        event_bus: Event bus for outbound domain events
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(
        self, key: str, default: Optional[Any] = None, required: bool = False
    ) -> Any:
        """
        Retrieve a configuration value.

        Raises:
            ConfigurationError: If required=True and the key is missing
        """
        from passport.core.exceptions import ConfigurationError

        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(
                key, f"Required configuration key '{key}' is missing"
            )
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Publish a domain event.

        The event name is prefixed with `gamification.events.prefix`
        (default "gamification") unless it already contains a dot.
        """
        if "." not in event_type:
            prefix = self.get_config("gamification.events.prefix", "gamification")
            event_type = f"{prefix}.{event_type}"
        await self._events.publish(event_type, {**data, **(context or {})})

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(
        self,
        operation: str,
        error: Exception,
        **context: Any,
    ) -> None:
        """Log at ERROR for alertable failures, WARNING for expected ones."""
        self.log.log(
            logging.ERROR if should_alert(error) else logging.WARNING,
            f"Service error during {operation}: {str(error)}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_code": getattr(error, "error_code", None),
                "error_message": str(error),
                "retryable": is_transient_error(error),
                **context,
            },
            exc_info=error,
        )

    def validate_positive_int(self, value: int, name: str) -> None:
        """
        Raises:
            ValidationError: If value is not a positive integer
        """
        from .exceptions import ValidationError

        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ValidationError(
                name, f"{name} must be a positive integer, got {value}"
            )

    def validate_subject_id(self, subject_id: Any) -> str:
        """Normalize a subject identifier to a non-empty string."""
        from .exceptions import ValidationError

        if subject_id is None or str(subject_id).strip() == "":
            raise ValidationError("subject_id", "subject_id must be a non-empty value")
        return str(subject_id)
