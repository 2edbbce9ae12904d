"""
Unit tests for the QuestProgress entity.

Tests step transitions, monotonic progress, completion and domain events.
"""

from datetime import datetime, timezone

import pytest

from passport.domain.models.base import DomainValidationError
from passport.domain.models.gamification import (
    QuestDefinition,
    QuestStatus,
    QuestStep,
    UserQuestState,
)
from passport.domain.models.quest_progress import QuestProgress

from tests.conftest import assert_domain_event_emitted

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def quest() -> QuestDefinition:
    return QuestDefinition(
        id=1,
        name="Weekend Getaway",
        steps=(
            QuestStep(step_number=1, trigger_event="trip_created"),
            QuestStep(step_number=2, trigger_event="booking_made"),
            QuestStep(step_number=3, trigger_event="check_in"),
        ),
        completion_xp=200,
    )


@pytest.fixture
def fresh(quest) -> QuestProgress:
    return QuestProgress(quest, UserQuestState(subject_id="u-1", quest_id=1))


@pytest.mark.unit
@pytest.mark.domain
class TestQuestProgressTransitions:
    def test_accepts_only_current_step_trigger(self, fresh):
        assert fresh.accepts("trip_created")
        assert not fresh.accepts("booking_made")

    def test_step_advances_and_records_progress(self, fresh):
        # Act
        outcome = fresh.complete_current_step(NOW)

        # Assert
        assert outcome.step.step_number == 1
        assert outcome.quest_completed is False
        assert fresh.current_step == 2
        assert fresh.to_state().progress == {1: True}
        assert fresh.expected_step == 1

    def test_progress_is_monotonic(self, fresh):
        """current_step never decreases; progress keys are never unset."""
        seen_steps = [fresh.current_step]
        seen_progress = [set()]

        while not fresh.is_completed:
            fresh.complete_current_step(NOW)
            seen_steps.append(fresh.current_step)
            seen_progress.append(set(fresh.to_state().progress))

        assert seen_steps == sorted(seen_steps)
        assert all(a <= b for a, b in zip(seen_progress, seen_progress[1:]))

    def test_last_step_completes(self, fresh):
        fresh.complete_current_step(NOW)
        fresh.complete_current_step(NOW)

        outcome = fresh.complete_current_step(NOW)

        state = fresh.to_state()
        assert outcome.quest_completed is True
        assert state.status is QuestStatus.COMPLETED
        assert state.completed_at == NOW
        assert state.current_step == 3
        assert fresh.current_step_definition() is None
        assert not fresh.accepts("check_in")

    def test_completed_is_terminal(self, quest):
        done = QuestProgress(
            quest,
            UserQuestState(
                subject_id="u-1",
                quest_id=1,
                status=QuestStatus.COMPLETED,
                current_step=3,
                progress={1: True, 2: True, 3: True},
            ),
        )

        with pytest.raises(DomainValidationError):
            done.complete_current_step(NOW)

    def test_state_for_other_quest_rejected(self, quest):
        with pytest.raises(DomainValidationError):
            QuestProgress(quest, UserQuestState(subject_id="u-1", quest_id=2))

    def test_current_step_beyond_definition_rejected(self, quest):
        stale = QuestProgress(quest, UserQuestState(subject_id="u-1", quest_id=1, current_step=9))

        assert stale.current_step_definition() is None
        with pytest.raises(DomainValidationError):
            stale.complete_current_step(NOW)


@pytest.mark.unit
@pytest.mark.domain
class TestQuestProgressEvents:
    def test_step_event(self, fresh):
        fresh.complete_current_step(NOW)

        assert assert_domain_event_emitted(fresh, "quest.step_completed")
        assert not assert_domain_event_emitted(fresh, "quest.completed")

    def test_completion_events_then_cleared(self, fresh):
        for _ in range(3):
            fresh.complete_current_step(NOW)

        events = fresh.clear_domain_events()

        assert [event.event_name for event in events] == [
            "quest.step_completed",
            "quest.step_completed",
            "quest.step_completed",
            "quest.completed",
        ]
        assert events[-1].payload == {
            "subject_id": "u-1",
            "quest_id": 1,
            "quest_name": "Weekend Getaway",
        }
        assert fresh.get_pending_events() == []
