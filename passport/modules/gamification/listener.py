"""
Activity event bridge.

Subscribes the engine to `activity.<trigger>` for every trigger listed under
`gamification.events.triggers`. Payloads look like:

    {"subject_id": "u-42", "context": {"city_name": "Brașov"}}

Listeners run at HIGH priority so the grants are committed before NORMAL
listeners (notifications, feeds) see the same activity event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from passport.core.event.types import ListenerPriority
from passport.core.logging.logger import get_logger
from passport.domain.models.gamification import BadgeDefinition
from passport.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager
    from passport.core.event.bus import EventBus

    from .engine import GamificationEngine

ACTIVITY_PREFIX = "activity."
DEFAULT_TRIGGERS = ("check_in", "trip_created", "booking_made", "review_posted")


class GamificationListener:
    def __init__(
        self,
        engine: GamificationEngine,
        event_bus: EventBus,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._engine = engine
        self._events = event_bus
        self._config = config_manager
        self.log = logger or get_logger(__name__)
        self._registered: Dict[str, str] = {}

    def triggers(self) -> List[str]:
        configured = (
            self._config.get("gamification.events.triggers", list(DEFAULT_TRIGGERS))
            if self._config is not None
            else list(DEFAULT_TRIGGERS)
        )
        return [str(trigger) for trigger in configured or []]

    def register(self) -> List[str]:
        """Subscribe to every configured trigger; returns the event names."""
        for trigger in self.triggers():
            event_name = f"{ACTIVITY_PREFIX}{trigger}"
            if event_name in self._registered:
                continue
            identifier = self._events.subscribe(
                event_name,
                self._handler_for(trigger),
                priority=ListenerPriority.HIGH,
                identifier=f"gamification.engine@{event_name}",
            )
            self._registered[event_name] = identifier

        self.log.info(
            "Gamification listener registered",
            extra={"events": sorted(self._registered)},
        )
        return sorted(self._registered)

    def unregister(self) -> None:
        for event_name, identifier in self._registered.items():
            self._events.unsubscribe(event_name, identifier)
        self._registered.clear()

    def _handler_for(self, trigger: str):
        async def on_activity(payload: Dict[str, Any]) -> List[BadgeDefinition]:
            return await self.handle(trigger, payload)

        return on_activity

    async def handle(self, trigger_event: str, payload: Dict[str, Any]) -> List[BadgeDefinition]:
        subject_id = payload.get("subject_id")
        context = payload.get("context")
        if context is not None and not isinstance(context, dict):
            self.log.warning(
                "Ignoring non-mapping activity context",
                extra={"trigger_event": trigger_event, "context_type": type(context).__name__},
            )
            context = None

        try:
            return await self._engine.process(subject_id, trigger_event, context)
        except ValidationError as exc:
            self.log.warning(
                "Malformed activity event",
                extra={"trigger_event": trigger_event, **exc.details},
            )
            return []
