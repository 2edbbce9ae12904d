"""
Unit tests for the GamificationEngine facade.

Tests input validation, concurrent idempotency under per-subject
serialization, lock failures and the combined badge result.
"""

import asyncio

import pytest

from passport.core.exceptions import DatabaseError, SubjectLockError
from passport.modules.shared.exceptions import ValidationError

from tests.conftest import SUBJECT, published_events


@pytest.fixture
def brasov(store):
    store.add_badge(1, "Brasov Explorer")
    store.add_rule(
        1,
        "check_in",
        {"type": "location", "city_name": "Brasov"},
        name="Visit Brasov",
        xp_reward=50,
        badge_id=1,
    )


@pytest.mark.unit
class TestProcessValidation:
    @pytest.mark.parametrize("subject_id", [None, "", "   "])
    async def test_blank_subject_rejected(self, engine, subject_id):
        with pytest.raises(ValidationError):
            await engine.process(subject_id, "check_in", {})

    @pytest.mark.parametrize("trigger", [None, "", "  ", 42])
    async def test_blank_trigger_rejected(self, engine, trigger):
        with pytest.raises(ValidationError):
            await engine.process(SUBJECT, trigger, {})

    async def test_numeric_subject_normalized(self, engine, store, brasov):
        await engine.process(42, "check_in", {"city_name": "Brasov"})

        assert store.holds_badge("42", 1)

    async def test_missing_context_treated_as_empty(self, engine, store, brasov):
        badges = await engine.process(SUBJECT, "check_in")

        assert badges == []


@pytest.mark.unit
class TestProcessConcurrency:
    async def test_concurrent_identical_events_grant_once(self, engine, store, brasov):
        """Ten simultaneous check-ins produce a single grant."""
        # Act
        results = await asyncio.gather(
            *(engine.process(SUBJECT, "check_in", {"city_name": "Brasov"}) for _ in range(10))
        )

        # Assert
        assert sum(len(badges) for badges in results) == 1
        assert len(store.ledger_for(SUBJECT)) == 1
        assert store.totals(SUBJECT).total_xp == 50
        assert engine.serializer.active_subjects() == 0

    async def test_different_subjects_both_granted(self, engine, store, brasov):
        results = await asyncio.gather(
            engine.process("u-1", "check_in", {"city_name": "Brasov"}),
            engine.process("u-2", "check_in", {"city_name": "Brasov"}),
        )

        assert [len(badges) for badges in results] == [1, 1]
        assert store.holds_badge("u-1", 1) and store.holds_badge("u-2", 1)


@pytest.mark.unit
class TestProcessFailures:
    async def test_lock_timeout_returns_empty(self, engine, store, brasov, mocker):
        # Arrange
        mocker.patch.object(
            engine.serializer, "hold", side_effect=SubjectLockError(SUBJECT, 10.0)
        )

        # Act
        badges = await engine.process(SUBJECT, "check_in", {"city_name": "Brasov"})

        # Assert
        assert badges == []
        assert store.ledger == []

    async def test_infrastructure_error_returns_empty(self, engine, store, brasov, mocker):
        mocker.patch.object(
            engine.rules,
            "match_rules",
            side_effect=DatabaseError("fetch_active_rules", RuntimeError("gone")),
        )

        assert await engine.process(SUBJECT, "check_in", {"city_name": "Brasov"}) == []

    async def test_storage_failure_reports_missing_grants(self, engine, store, brasov):
        store.failures["fetch_active_rules"] = RuntimeError("connection refused")
        store.failures["fetch_in_progress_quests"] = RuntimeError("connection refused")

        badges = await engine.process(SUBJECT, "check_in", {"city_name": "Brasov"})

        assert badges == []


@pytest.mark.unit
class TestProcessResult:
    async def test_rule_and_quest_badges_combined(self, engine, store, brasov, mock_event_bus):
        # Arrange
        store.add_badge(2, "Quest Finisher")
        store.add_quest(
            1,
            "Check In Once",
            [{"step_number": 1, "trigger_event": "check_in"}],
            completion_badge_id=2,
        )
        store.start(SUBJECT, 1)

        # Act
        badges = await engine.process(SUBJECT, "check_in", {"city_name": "Brasov"})

        # Assert
        assert [badge.id for badge in badges] == [1, 2]
        assert published_events(mock_event_bus) == [
            "gamification.badge_awarded",
            "gamification.quest_step_completed",
            "gamification.quest_completed",
            "gamification.badge_awarded",
        ]

    async def test_quests_advance_on_legacy_path(self, engine, store):
        """No rules for the trigger still moves quests forward."""
        store.add_badge(5, "Iasi", criteria={"type": "location", "city_name": "Iasi"})
        store.add_quest(1, "Solo", [{"step_number": 1, "trigger_event": "check_in"}])
        store.start(SUBJECT, 1)

        badges = await engine.process(SUBJECT, "check_in", {"city_name": "Iasi"})

        assert [badge.id for badge in badges] == [5]
        assert store.user_quests[(SUBJECT, 1)].is_completed


@pytest.mark.unit
class TestSqlStoreWiring:
    """The PostgreSQL store is importable from the package and fully implemented."""

    def test_exported_and_concrete(self, mock_config_manager, mock_event_bus):
        from passport.modules.gamification import (
            GamificationEngine,
            GamificationStore,
            GamificationUnitOfWork,
            SqlGamificationStore,
            SqlGamificationUnitOfWork,
        )

        store = SqlGamificationStore()
        uow = SqlGamificationUnitOfWork(session=None, store=store)

        assert isinstance(store, GamificationStore)
        assert isinstance(uow, GamificationUnitOfWork)
        assert GamificationEngine.build(store, mock_config_manager, mock_event_bus) is not None
