"""
EventBus for the Passport engine.

Purpose
-------
In-process publish/subscribe used in two directions:
- inbound: the host application publishes `activity.<trigger>` events and the
  gamification listener turns them into engine evaluations;
- outbound: the engine publishes `gamification.*` events (badge awarded,
  quest completed) for notifications and projections.

Design Notes
------------
- Listeners are keyed by exact event name or a trailing wildcard
  (`"gamification.*"`).
- Execution follows the tiered model in `EventScheduler`.
- `once=True` listeners are pruned atomically before they run.
- Listener timeouts come from ConfigManager keys
  `core.event.listener_timeout.critical_seconds` / `high_seconds`.

Usage
-----
>>> bus = EventBus()
>>> bus.subscribe("gamification.badge_awarded", notify, priority=ListenerPriority.NORMAL)
>>> await bus.publish("gamification.badge_awarded", {"subject_id": "u-1", "badge_id": 3})
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Optional

from passport.core.event.scheduler import EventScheduler
from passport.core.event.types import (
    Callback,
    EventListener,
    EventPayload,
    ListenerPriority,
    default_listener_id,
)
from passport.core.logging.logger import get_logger

if TYPE_CHECKING:
    from passport.core.config.manager import ConfigManager

logger = get_logger(__name__)


class EventBus:
    """
    Tiered async EventBus.

    Designed for single-threaded asyncio usage; registry mutations happen
    between awaits.
    """

    def __init__(
        self,
        config_manager: Optional[type[ConfigManager]] = None,
        *,
        scheduler: Optional[EventScheduler] = None,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._config_manager = config_manager
        self._scheduler = scheduler or EventScheduler()
        self._listeners: dict[str, list[EventListener]] = {}
        self._publish_counts: dict[str, int] = {}

        self._critical_timeout = self._load_timeout(
            key="core.event.listener_timeout.critical_seconds",
            override=critical_timeout_seconds,
            default=5.0,
        )
        self._high_timeout = self._load_timeout(
            key="core.event.listener_timeout.high_seconds",
            override=high_timeout_seconds,
            default=10.0,
        )

        logger.info(
            "EventBus initialized",
            extra={
                "critical_timeout_seconds": self._critical_timeout,
                "high_timeout_seconds": self._high_timeout,
            },
        )

    # ------------------------------------------------------------------ #
    # Configuration Loading
    # ------------------------------------------------------------------ #

    def _load_timeout(self, key: str, override: Optional[float], default: float) -> float:
        """override -> config -> default."""
        if override is not None:
            return float(override)
        if self._config_manager is None:
            return float(default)

        value = self._config_manager.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid listener timeout in config, using default",
                extra={"config_key": key, "value": value, "default_value": default},
            )
            return float(default)

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_callback_signature(callback: Callback) -> None:
        try:
            sig = inspect.signature(callback)
        except (TypeError, ValueError):
            return

        params = list(sig.parameters.values())
        if len(params) != 1:
            callback_name = getattr(callback, "__qualname__", None) or getattr(
                callback, "__name__", repr(callback)
            )
            raise ValueError(
                f"Event listener must accept exactly 1 parameter (EventPayload), "
                f"got {len(params)} parameters for '{callback_name}'"
            )

    def subscribe(
        self,
        event_name: str,
        callback: Callback,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or trailing wildcard.

        Returns the listener identifier. Registering the same identifier twice
        for one event is ignored with a warning.

        Raises
        ------
        ValueError:
            If the callback does not take exactly one parameter.
        """
        self._validate_callback_signature(callback)

        listener = EventListener(
            callback=callback,
            priority=priority,
            identifier=identifier or default_listener_id(event_name, callback),
            once=once,
        )

        bucket = self._listeners.setdefault(event_name, [])
        if any(existing.identifier == listener.identifier for existing in bucket):
            logger.warning(
                "EventBus: duplicate listener prevented",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        bucket.append(listener)
        logger.debug(
            "EventBus: subscribed listener",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
                "once": listener.once,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        bucket = self._listeners.get(event_name, [])
        remaining = [lst for lst in bucket if lst.identifier != identifier]
        removed = len(remaining) != len(bucket)

        if remaining:
            self._listeners[event_name] = remaining
        else:
            self._listeners.pop(event_name, None)

        if removed:
            logger.debug(
                "EventBus: unsubscribed listener",
                extra={"event_name": event_name, "listener_id": identifier},
            )
        return removed

    def clear(self) -> None:
        """Remove all listeners. Intended for tests and full reinit."""
        total = self.get_listener_count()
        self._listeners.clear()
        logger.info(
            "EventBus: cleared all listeners",
            extra={"previous_listener_count": total},
        )

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    @staticmethod
    def _matches(pattern: str, event_name: str) -> bool:
        if pattern == event_name:
            return True
        if pattern.endswith(".*"):
            return event_name.startswith(pattern[:-1])
        return pattern == "*"

    def _extract_listeners(self, event_name: str) -> list[EventListener]:
        """Collect matching listeners sorted by priority and prune once=True."""
        matched: list[EventListener] = []
        for pattern in list(self._listeners):
            if not self._matches(pattern, event_name):
                continue
            bucket = self._listeners[pattern]
            matched.extend(bucket)
            kept = [lst for lst in bucket if not lst.once]
            if kept:
                self._listeners[pattern] = kept
            else:
                self._listeners.pop(pattern)

        return sorted(matched, key=lambda lst: lst.priority.value)

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Publish an event to all matching listeners.

        Returns results from CRITICAL/HIGH/NORMAL listeners; LOW-tier
        listeners are fire-and-forget and not included.
        """
        self._publish_counts[event_name] = self._publish_counts.get(event_name, 0) + 1

        listeners = self._extract_listeners(event_name)
        if not listeners:
            logger.debug(
                "EventBus: no listeners for event",
                extra={"event_name": event_name},
            )
            return []

        logger.debug(
            "EventBus: publishing event",
            extra={
                "event_name": event_name,
                "listener_count": len(listeners),
                "payload_keys": list(data.keys()),
            },
        )

        return await self._scheduler.execute(
            event_name=event_name,
            payload=data,
            listeners=listeners,
            logger=logger,
            critical_timeout=self._critical_timeout,
            high_timeout=self._high_timeout,
        )

    async def drain(self) -> None:
        """Await background LOW-tier listeners."""
        await self._scheduler.drain()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name:
            return sum(
                len(bucket)
                for pattern, bucket in self._listeners.items()
                if self._matches(pattern, event_name)
            )
        return sum(len(bucket) for bucket in self._listeners.values())

    def get_all_events(self) -> list[str]:
        return sorted(self._listeners)

    def get_metrics_summary(self) -> dict[str, Any]:
        return {
            "total_events_published": sum(self._publish_counts.values()),
            "events_by_type": dict(self._publish_counts),
            "total_errors": self._scheduler.error_count,
            "total_listeners": self.get_listener_count(),
            "background_tasks": self._scheduler.get_background_task_count(),
        }
