"""
QuestProgress entity: the per-subject quest state machine.

States
------
    in_progress{current_step, progress}  --last step satisfied-->  completed{completed_at}
    in_progress{n, p}                    --step n satisfied----->  in_progress{n+1, p+{n}}

`completed` is terminal. `current_step` never decreases and progress keys,
once set, are never unset. The entity only moves state; granting rewards
for a transition is the caller's job, driven by the returned StepOutcome.

Domain events
-------------
- quest.step_completed  {subject_id, quest_id, step_number}
- quest.completed       {subject_id, quest_id, quest_name}
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Optional

from passport.domain.models.base import DomainValidationError, Entity
from passport.domain.models.gamification import (
    QuestDefinition,
    QuestStatus,
    QuestStep,
    UserQuestState,
)


@dataclass(frozen=True)
class StepOutcome:
    """What a single satisfied step did to the quest."""

    step: QuestStep
    quest_completed: bool


class QuestProgress(Entity):
    def __init__(self, quest: QuestDefinition, state: UserQuestState) -> None:
        if quest.id != state.quest_id:
            raise DomainValidationError(
                f"state belongs to quest {state.quest_id}, not {quest.id}",
                field="quest_id",
            )
        super().__init__((state.subject_id, quest.id))
        self.quest = quest
        self._original = state
        self._status = state.status
        self._current_step = state.current_step
        self._progress: Dict[int, bool] = dict(state.progress)
        self._completed_at = state.completed_at

    # ------------------------------------------------------------------ #
    # Read API
    # ------------------------------------------------------------------ #

    @property
    def subject_id(self) -> str:
        return self._original.subject_id

    @property
    def status(self) -> QuestStatus:
        return self._status

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def expected_step(self) -> int:
        """Step index the row held when it was loaded (optimistic guard)."""
        return self._original.current_step

    @property
    def is_completed(self) -> bool:
        return self._status is QuestStatus.COMPLETED

    def current_step_definition(self) -> Optional[QuestStep]:
        if self.is_completed:
            return None
        return self.quest.step(self._current_step)

    def accepts(self, trigger_event: str) -> bool:
        """True when the current step exists and reacts to `trigger_event`."""
        step = self.current_step_definition()
        return step is not None and step.trigger_event == trigger_event

    def all_steps_done(self) -> bool:
        return all(
            self._progress.get(step.step_number, False) for step in self.quest.steps
        )

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def complete_current_step(self, now: Optional[datetime] = None) -> StepOutcome:
        """
        Mark the current step done and move to the next step or complete.

        Raises
        ------
        DomainValidationError
            If the quest is already completed or the current step is missing.
        """
        if self.is_completed:
            raise DomainValidationError("quest is already completed", field="status")

        step = self.current_step_definition()
        if step is None:
            raise DomainValidationError(
                f"quest {self.quest.id} has no step {self._current_step}",
                field="current_step",
            )

        self._progress[step.step_number] = True
        self.add_domain_event(
            "quest.step_completed",
            {
                "subject_id": self.subject_id,
                "quest_id": self.quest.id,
                "step_number": step.step_number,
            },
        )

        if self.all_steps_done():
            self._status = QuestStatus.COMPLETED
            self._completed_at = now or datetime.now(timezone.utc)
            self.add_domain_event(
                "quest.completed",
                {
                    "subject_id": self.subject_id,
                    "quest_id": self.quest.id,
                    "quest_name": self.quest.name,
                },
            )
            return StepOutcome(step=step, quest_completed=True)

        self._current_step += 1
        return StepOutcome(step=step, quest_completed=False)

    def to_state(self) -> UserQuestState:
        return replace(
            self._original,
            status=self._status,
            current_step=self._current_step,
            progress=dict(self._progress),
            completed_at=self._completed_at,
        )
