"""
Event system for the Passport engine.

Exposes a process-wide `event_bus` singleton. Services receive it through
their constructor so tests can substitute a mock.
"""

from .bus import EventBus
from .types import (
    Callback,
    EventListener,
    EventPayload,
    ListenerPriority,
)

# Global runtime singleton EventBus
event_bus = EventBus()

__all__ = [
    "event_bus",
    "EventBus",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "Callback",
]
