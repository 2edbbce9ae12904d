"""
Unit tests for the rule matcher.

Tests location/count rules end to end, idempotent re-fires, non-exclusive
priority, fail-closed conditions, legacy exclusivity and per-rule failure
isolation.
"""

import pytest

from passport.modules.gamification.rules import rule_reason
from passport.modules.shared.exceptions import GrantConflictError

from tests.conftest import SUBJECT, published_events, published_payloads

BRASOV = {"type": "location", "city_name": "Brasov"}


@pytest.fixture
def brasov_rule(store):
    store.add_badge(1, "Brasov Explorer")
    return store.add_rule(1, "check_in", BRASOV, name="Visit Brasov", xp_reward=50, badge_id=1)


# ============================================================================
# LOCATION & COUNT RULES
# ============================================================================


@pytest.mark.unit
class TestLocationRule:
    """Check-in rules keyed on city."""

    async def test_case_insensitive_match_grants_badge_and_xp(self, engine, store, brasov_rule):
        # Act
        badges = await engine.process(SUBJECT, "check_in", {"city_name": "brasov"})

        # Assert
        assert [badge.id for badge in badges] == [1]
        assert store.holds_badge(SUBJECT, 1)
        ledger = store.ledger_for(SUBJECT)
        assert [(entry.xp, entry.reason) for entry in ledger] == [(50, "Rule: Visit Brasov")]

    async def test_second_fire_grants_nothing(self, engine, store, brasov_rule):
        """Re-firing the same event is a no-op once the badge is held."""
        # Arrange
        await engine.process(SUBJECT, "check_in", {"city_name": "brasov"})

        # Act
        badges = await engine.process(SUBJECT, "check_in", {"city_name": "Brasov"})

        # Assert
        assert badges == []
        assert len(store.ledger_for(SUBJECT)) == 1
        assert store.totals(SUBJECT).total_xp == 50

    async def test_other_city_not_eligible(self, engine, store, brasov_rule):
        badges = await engine.process(SUBJECT, "check_in", {"city_name": "Sibiu"})

        assert badges == []
        assert store.ledger == []

    async def test_other_trigger_ignored(self, engine, store, brasov_rule):
        result = await engine.rules.match_rules("trip_created", SUBJECT, {"city_name": "Brasov"})

        assert result.granted_causes == []

    async def test_inactive_rule_is_not_evaluated(self, engine, store):
        store.add_badge(1, "Brasov Explorer")
        store.add_rule(1, "check_in", BRASOV, xp_reward=50, badge_id=1, is_active=False)

        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "Brasov"})

        assert result.granted_badges == []


@pytest.mark.unit
class TestCountRule:
    """Rules gated on activity counts."""

    async def test_threshold_reached_on_fifth_trip(self, engine, store):
        # Arrange
        store.add_rule(
            7,
            "trip_created",
            {"type": "count", "field": "trips_created", "operator": "gte", "value": 5},
            name="Road Warrior",
            xp_reward=100,
        )
        store.record_activity("trips", SUBJECT, 4)

        # Act: four trips is not enough
        first = await engine.rules.match_rules("trip_created", SUBJECT, {})

        # Assert
        assert first.granted_causes == []
        assert store.ledger == []

        # Act: fifth trip
        store.record_activity("trips", SUBJECT)
        second = await engine.rules.match_rules("trip_created", SUBJECT, {})

        # Assert
        assert second.granted_causes == ["Rule: Road Warrior"]
        assert [entry.xp for entry in store.ledger_for(SUBJECT)] == [100]

    async def test_reward_only_rule_fires_each_time(self, engine, store):
        """Without a badge or achievement there is nothing to dedupe on."""
        store.add_rule(8, "review_posted", {"type": "always"}, xp_reward=5)

        await engine.rules.match_rules("review_posted", SUBJECT, {})
        await engine.rules.match_rules("review_posted", SUBJECT, {})

        assert [entry.xp for entry in store.ledger_for(SUBJECT)] == [5, 5]


# ============================================================================
# PRIORITY & FAIL-CLOSED
# ============================================================================


@pytest.mark.unit
class TestRuleOrdering:
    async def test_all_matching_rules_fire_in_priority_order(self, engine, store):
        """Priority orders evaluation; it does not suppress lower rules."""
        # Arrange
        store.add_badge(1, "Low")
        store.add_badge(2, "High")
        store.add_rule(1, "check_in", {"type": "always"}, name="low", priority=0, badge_id=1)
        store.add_rule(2, "check_in", {"type": "always"}, name="high", priority=10, badge_id=2)
        store.add_rule(3, "check_in", {"type": "always"}, name="mid", priority=5, coins_reward=3)

        # Act
        result = await engine.rules.match_rules("check_in", SUBJECT, {})

        # Assert
        assert result.granted_causes == ["Rule: high", "Rule: mid", "Rule: low"]
        assert [badge.id for badge in result.granted_badges] == [2, 1]
        assert result.used_legacy is False

    async def test_equal_priority_orders_by_id(self, engine, store):
        store.add_rule(5, "check_in", {"type": "always"}, name="five", coins_reward=1)
        store.add_rule(4, "check_in", {"type": "always"}, name="four", coins_reward=1)

        result = await engine.rules.match_rules("check_in", SUBJECT, {})

        assert result.granted_causes == ["Rule: four", "Rule: five"]


@pytest.mark.unit
class TestFailClosed:
    @pytest.mark.parametrize(
        "condition",
        [
            {"type": "weather", "value": "sunny"},
            {"type": "count", "field": "photos_uploaded", "value": 0},
            {"type": "count", "field": "trips_created", "operator": "between", "value": 1},
            {},
        ],
    )
    async def test_unevaluable_conditions_grant_nothing(self, engine, store, condition):
        store.add_badge(1, "Mystery")
        store.add_rule(1, "check_in", condition, xp_reward=10, badge_id=1)

        result = await engine.rules.match_rules("check_in", SUBJECT, {"weather": "sunny"})

        assert result.granted_causes == []
        assert result.used_legacy is False
        assert store.ledger == []


# ============================================================================
# LEGACY EXCLUSIVITY
# ============================================================================


@pytest.mark.unit
class TestLegacyExclusivity:
    """Legacy badge criteria only run when no active rule exists."""

    @pytest.fixture
    def legacy_badge(self, store):
        return store.add_badge(
            50,
            "Old Town",
            xp_value=20,
            criteria={"type": "location", "city_name": "Sibiu"},
        )

    async def test_no_rules_uses_legacy(self, engine, store, legacy_badge):
        # Act
        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "sibiu"})

        # Assert
        assert result.used_legacy is True
        assert result.granted_badges == [legacy_badge]
        assert result.granted_causes == ["Badge Earned: Old Town"]
        assert store.totals(SUBJECT).total_xp == 20

    async def test_rules_present_but_unmatched_skips_legacy(self, engine, store, legacy_badge):
        store.add_rule(1, "check_in", BRASOV, xp_reward=50)

        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "Sibiu"})

        assert result.used_legacy is False
        assert result.granted_badges == []
        assert not store.holds_badge(SUBJECT, 50)

    async def test_inactive_rules_count_as_none(self, engine, store, legacy_badge):
        store.add_rule(1, "check_in", BRASOV, xp_reward=50, is_active=False)

        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "Sibiu"})

        assert result.used_legacy is True

    async def test_malformed_active_rule_blocks_legacy(self, engine, store, legacy_badge):
        """A configured but unloadable rule is ineligible, not absent."""
        # Arrange
        store.malformed_rules["check_in"] = 1

        # Act
        badges = await engine.process(SUBJECT, "check_in", {"city_name": "sibiu"})

        # Assert
        assert badges == []
        assert not store.holds_badge(SUBJECT, 50)
        assert store.ledger == []
        assert "list_badges" not in store.calls

    async def test_malformed_rule_beside_valid_rule_is_skipped(self, engine, store, legacy_badge):
        store.malformed_rules["check_in"] = 1
        store.add_rule(1, "check_in", {"type": "always"}, name="Any Check-in", coins_reward=2)

        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "Sibiu"})

        assert result.used_legacy is False
        assert result.granted_causes == ["Rule: Any Check-in"]
        assert not store.holds_badge(SUBJECT, 50)

    async def test_rule_fetch_failure_does_not_fall_back(self, engine, store, legacy_badge):
        """A storage error is not the same as 'no rules'."""
        # Arrange
        store.failures["fetch_active_rules"] = RuntimeError("db down")

        # Act
        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "Sibiu"})

        # Assert
        assert result.used_legacy is False
        assert result.granted_badges == []
        assert "list_badges" not in store.calls

    async def test_legacy_failure_is_contained(self, engine, store, legacy_badge):
        store.failures["list_badges"] = RuntimeError("db down")

        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "Sibiu"})

        assert result.used_legacy is True
        assert result.granted_badges == []


# ============================================================================
# FAILURE ISOLATION
# ============================================================================


@pytest.mark.unit
class TestRuleFailureIsolation:
    async def test_failed_rule_rolls_back_and_others_continue(self, engine, store):
        """A rule whose badge is missing leaves no partial XP behind."""
        # Arrange
        store.add_badge(2, "Real")
        store.add_rule(1, "check_in", {"type": "always"}, name="broken", xp_reward=40, badge_id=999)
        store.add_rule(2, "check_in", {"type": "always"}, name="ok", badge_id=2)

        # Act
        result = await engine.rules.match_rules("check_in", SUBJECT, {})

        # Assert
        assert result.granted_causes == ["Rule: ok"]
        assert store.ledger_for(SUBJECT) == []
        assert store.holds_badge(SUBJECT, 2)
        assert store.rollbacks == 1

    async def test_storage_error_mid_rule_is_logged(self, engine, store, mocker):
        store.add_badge(1, "Brasov Explorer")
        store.add_rule(1, "check_in", {"type": "always"}, xp_reward=10, badge_id=1)
        store.failures["insert_user_badge"] = RuntimeError("deadlock detected")
        log_error = mocker.spy(engine.rules, "log_error")

        result = await engine.rules.match_rules("check_in", SUBJECT, {})

        assert result.granted_causes == []
        assert store.ledger == []
        assert log_error.call_args.args[0] == "apply_rule"

    async def test_lost_badge_race_rolls_back_rule_xp(self, engine, store, mocker):
        """A False from award_badge rolls back XP granted earlier in the rule."""
        # Arrange
        store.add_badge(1, "Brasov Explorer")
        store.add_rule(1, "check_in", BRASOV, xp_reward=50, badge_id=1)
        mocker.patch.object(
            engine.rules._granter, "award_badge", mocker.AsyncMock(return_value=False)
        )
        log_error = mocker.spy(engine.rules, "log_error")

        # Act
        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "Brasov"})

        # Assert
        assert result.granted_badges == []
        assert store.ledger == []
        assert SUBJECT not in store.progress
        log_error.assert_not_called()

    async def test_held_achievement_skips_rule(self, engine, store):
        store.add_achievement(3, "Local Legend")
        store.add_rule(1, "check_in", {"type": "always"}, xp_reward=10, achievement_id=3)
        store.user_achievements[(SUBJECT, 3)] = None

        result = await engine.rules.match_rules("check_in", SUBJECT, {})

        assert result.granted_causes == []
        assert store.ledger == []

    def test_grant_conflict_carries_target(self):
        exc = GrantConflictError("badge", SUBJECT, 1)

        assert exc.details == {"kind": "badge", "subject_id": SUBJECT, "target_id": 1}
        assert exc.error_code == "BADGE_ALREADY_GRANTED"


# ============================================================================
# EVENTS
# ============================================================================


@pytest.mark.unit
class TestRuleEvents:
    async def test_badge_and_achievement_events_after_commit(
        self, engine, store, mock_event_bus
    ):
        # Arrange
        store.add_badge(1, "Brasov Explorer")
        store.add_achievement(3, "Local Legend", tier="silver")
        rule = store.add_rule(
            1, "check_in", BRASOV, name="Visit Brasov", badge_id=1, achievement_id=3
        )

        # Act
        result = await engine.rules.match_rules("check_in", SUBJECT, {"city_name": "Brasov"})

        # Assert
        assert result.granted_causes == [rule_reason(rule)]
        assert [a.id for a in result.unlocked_achievements] == [3]
        assert published_events(mock_event_bus) == [
            "gamification.badge_awarded",
            "gamification.achievement_unlocked",
        ]
        payload = published_payloads(mock_event_bus, "gamification.badge_awarded")[0]
        assert payload["source"] == "rule"
        assert payload["rule_id"] == 1
        assert payload["trigger_event"] == "check_in"

    async def test_no_events_for_rolled_back_rule(self, engine, store, mock_event_bus):
        store.add_rule(1, "check_in", {"type": "always"}, badge_id=404)

        await engine.rules.match_rules("check_in", SUBJECT, {})

        mock_event_bus.publish.assert_not_awaited()
