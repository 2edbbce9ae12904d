"""
Listener records for the Passport EventBus.

Priority tiers: CRITICAL and HIGH run sequentially under a timeout (the
activity listener driving the gamification engine is HIGH), NORMAL runs
concurrently and is awaited, LOW is fire-and-forget.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

EventPayload = dict[str, Any]

# Plain or coroutine function taking the payload
Callback = Callable[[EventPayload], Any]


class ListenerPriority(Enum):
    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


@dataclass(slots=True, frozen=True)
class EventListener:
    callback: Callback
    priority: ListenerPriority
    identifier: str
    once: bool = False


def default_listener_id(event_name: str, callback: Callback) -> str:
    """`module.qualname@event` for callbacks subscribed without an identifier."""
    module = getattr(callback, "__module__", "unknown")
    name = getattr(callback, "__qualname__", getattr(callback, "__name__", "callback"))
    return f"{module}.{name}@{event_name}"
