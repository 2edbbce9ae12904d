"""
Unit tests for the EventBus.

Tests subscription, wildcard routing, priority ordering, once-listeners and
listener failure isolation.
"""

import pytest

from passport.core.event.bus import EventBus
from passport.core.event.types import ListenerPriority


@pytest.fixture
def bus() -> EventBus:
    return EventBus(critical_timeout_seconds=1.0, high_timeout_seconds=1.0)


@pytest.mark.unit
class TestSubscribe:
    def test_rejects_wrong_arity(self, bus):
        async def two_args(payload, extra):
            return None

        with pytest.raises(ValueError):
            bus.subscribe("activity.check_in", two_args)

    def test_duplicate_identifier_ignored(self, bus):
        async def handler(payload):
            return None

        bus.subscribe("activity.check_in", handler, identifier="engine")
        bus.subscribe("activity.check_in", handler, identifier="engine")

        assert bus.get_listener_count("activity.check_in") == 1

    def test_default_identifier_names_callback_and_event(self, bus):
        async def handler(payload):
            return None

        listener_id = bus.subscribe("activity.check_in", handler)

        assert listener_id == f"{__name__}.{handler.__qualname__}@activity.check_in"
        assert bus.unsubscribe("activity.check_in", listener_id) is True

    def test_unsubscribe(self, bus):
        async def handler(payload):
            return None

        bus.subscribe("activity.check_in", handler, identifier="engine")

        assert bus.unsubscribe("activity.check_in", "engine") is True
        assert bus.unsubscribe("activity.check_in", "engine") is False
        assert bus.get_all_events() == []


@pytest.mark.unit
class TestPublish:
    async def test_exact_and_wildcard_listeners(self, bus):
        # Arrange
        seen = []

        async def exact(payload):
            seen.append(("exact", payload["badge_id"]))

        async def wildcard(payload):
            seen.append(("wildcard", payload["badge_id"]))

        bus.subscribe("gamification.badge_awarded", exact)
        bus.subscribe("gamification.*", wildcard)

        # Act
        await bus.publish("gamification.badge_awarded", {"badge_id": 3})
        await bus.publish("activity.check_in", {"badge_id": 4})

        # Assert
        assert sorted(seen) == [("exact", 3), ("wildcard", 3)]

    async def test_priority_order_and_results(self, bus):
        order = []

        async def normal(payload):
            order.append("normal")
            return "n"

        async def high(payload):
            order.append("high")
            return "h"

        bus.subscribe("activity.check_in", normal, priority=ListenerPriority.NORMAL)
        bus.subscribe("activity.check_in", high, priority=ListenerPriority.HIGH)

        results = await bus.publish("activity.check_in", {})

        assert order == ["high", "normal"]
        assert results == ["h", "n"]

    async def test_once_listener_runs_once(self, bus):
        calls = []

        async def handler(payload):
            calls.append(payload)

        bus.subscribe("activity.trip_created", handler, once=True)

        await bus.publish("activity.trip_created", {"n": 1})
        await bus.publish("activity.trip_created", {"n": 2})

        assert calls == [{"n": 1}]

    async def test_failing_listener_is_isolated(self, bus):
        async def broken(payload):
            raise RuntimeError("listener bug")

        async def healthy(payload):
            return "ok"

        bus.subscribe("activity.check_in", broken, identifier="broken")
        bus.subscribe("activity.check_in", healthy, identifier="healthy")

        results = await bus.publish("activity.check_in", {})

        assert results == [None, "ok"]
        assert bus.get_metrics_summary()["total_errors"] == 1

    async def test_low_priority_runs_in_background(self, bus):
        calls = []

        async def audit(payload):
            calls.append(payload)

        bus.subscribe("gamification.xp_awarded", audit, priority=ListenerPriority.LOW)

        results = await bus.publish("gamification.xp_awarded", {"amount": 5})
        await bus.drain()

        assert results == []
        assert calls == [{"amount": 5}]
