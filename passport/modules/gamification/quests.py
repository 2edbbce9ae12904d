"""
Quest Progress State Machine & Quest Service

Purpose
-------
Advance a subject's in-progress quests when a trigger event satisfies the
current step, and let subjects start quests.

Domain
------
- `QuestProgressMachine.advance`: one step per quest per event, step and
  completion rewards, completion badge
- `QuestService.start_quest`: create the in-progress row for a quest

Design Notes
------------
- Transitions are decided by the `QuestProgress` entity; this module owns
  the units of work and the rewards the transitions pay out.
- Each quest runs in its own unit of work. The progress write is guarded on
  the step and status that were read, and happens before any reward, so a
  concurrent advance loses with `QuestStateConflictError` and pays nothing.
- Expired quests are skipped and left in place.
- Quests are one-shot: a completed row is never restarted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Tuple

from passport.core.logging.logger import get_logger
from passport.domain.models.gamification import (
    BadgeDefinition,
    QuestDefinition,
    QuestStep,
    UserQuestState,
)
from passport.domain.models.quest_progress import QuestProgress, StepOutcome
from passport.modules.shared.base_service import BaseService
from passport.modules.shared.exceptions import (
    InvalidOperationError,
    NotFoundError,
    QuestStateConflictError,
)

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager
    from passport.core.event.bus import EventBus

    from .conditions import ConditionResolver
    from .rewards import RewardGranter
    from .serializer import SubjectSerializer
    from .store import GamificationStore


# Domain event name -> outbound bus event (prefixed by emit_event)
_DOMAIN_EVENT_NAMES = {
    "quest.step_completed": "quest_step_completed",
    "quest.completed": "quest_completed",
}


def step_reason(step: QuestStep) -> str:
    return f"Quest Step: {step.display_title}"


def completion_reason(quest: QuestDefinition) -> str:
    return f"Quest Completed: {quest.name}"


@dataclass
class QuestAdvanceResult:
    steps_completed: List[Tuple[int, int]] = field(default_factory=list)
    quests_completed: List[QuestDefinition] = field(default_factory=list)
    granted_badges: List[BadgeDefinition] = field(default_factory=list)


@dataclass(frozen=True)
class _Transition:
    progress: QuestProgress
    outcome: StepOutcome
    badge: Optional[BadgeDefinition]


# ============================================================================
# QuestProgressMachine
# ============================================================================


class QuestProgressMachine(BaseService):
    """
    Public Methods
    --------------
    - advance() -> Move every eligible in-progress quest forward by one step
    """

    def __init__(
        self,
        store: GamificationStore,
        resolver: ConditionResolver,
        granter: RewardGranter,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store
        self._resolver = resolver
        self._granter = granter

    async def advance(
        self,
        subject_id: str,
        trigger_event: str,
        context: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> QuestAdvanceResult:
        """
        Advance the subject's quests whose current step reacts to
        `trigger_event`.

        Never raises. A failure in one quest is logged and the others still
        advance.
        """
        now = now or datetime.now(timezone.utc)
        result = QuestAdvanceResult()

        try:
            async with self._store.unit_of_work() as uow:
                candidates = await uow.fetch_in_progress_quests(subject_id)
        except Exception as exc:
            self.log_error("fetch_in_progress_quests", exc, subject_id=subject_id)
            return result

        for state, quest in candidates:
            if state.is_expired(now):
                self.log.debug(
                    "Skipping expired quest",
                    extra={"subject_id": subject_id, "quest_id": quest.id},
                )
                continue

            progress = QuestProgress(quest, state)
            if not progress.accepts(trigger_event):
                continue

            try:
                transition = await self._advance_quest(progress, context, now)
            except QuestStateConflictError as exc:
                self.log.debug(
                    "Quest progress changed concurrently, skipping",
                    extra=exc.details,
                )
                continue
            except Exception as exc:
                self.log_error(
                    "advance_quest",
                    exc,
                    subject_id=subject_id,
                    quest_id=quest.id,
                )
                continue

            if transition is not None:
                await self._record(transition, trigger_event, result)

        return result

    async def _advance_quest(
        self,
        progress: QuestProgress,
        context: Optional[Mapping[str, Any]],
        now: datetime,
    ) -> Optional[_Transition]:
        subject_id = progress.subject_id
        quest = progress.quest
        step = progress.current_step_definition()
        if step is None:
            return None

        async with self._store.unit_of_work() as uow:
            if not await self._resolver.is_satisfied(
                step.condition,
                subject_id,
                context,
                uow,
                empty_is_satisfied=True,
            ):
                return None

            outcome = progress.complete_current_step(now)
            await uow.save_user_quest(progress.to_state(), progress.expected_step)

            if step.reward is not None:
                await self._granter.grant_rewards(
                    subject_id, step.reward, step_reason(step), uow=uow
                )

            badge: Optional[BadgeDefinition] = None
            if outcome.quest_completed:
                if not quest.completion_reward.is_empty:
                    await self._granter.grant_rewards(
                        subject_id,
                        quest.completion_reward,
                        completion_reason(quest),
                        uow=uow,
                    )
                if quest.completion_badge_id is not None:
                    completion_badge = await uow.get_badge(quest.completion_badge_id)
                    if completion_badge is None:
                        raise NotFoundError("Badge", quest.completion_badge_id)
                    if await self._granter.award_badge(subject_id, completion_badge, uow=uow):
                        badge = completion_badge

        return _Transition(progress=progress, outcome=outcome, badge=badge)

    async def _record(
        self,
        transition: _Transition,
        trigger_event: str,
        result: QuestAdvanceResult,
    ) -> None:
        progress = transition.progress
        result.steps_completed.append((progress.quest.id, transition.outcome.step.step_number))
        if transition.outcome.quest_completed:
            result.quests_completed.append(progress.quest)
        if transition.badge is not None:
            result.granted_badges.append(transition.badge)

        self.log_operation(
            "advance_quest",
            subject_id=progress.subject_id,
            quest_id=progress.quest.id,
            step_number=transition.outcome.step.step_number,
            quest_completed=transition.outcome.quest_completed,
        )

        for event in progress.clear_domain_events():
            await self.emit_event(
                _DOMAIN_EVENT_NAMES.get(event.event_name, event.event_name),
                event.payload,
                {"trigger_event": trigger_event},
            )
        if transition.badge is not None:
            await self.emit_event(
                "badge_awarded",
                {
                    "subject_id": progress.subject_id,
                    "badge_id": transition.badge.id,
                    "badge_name": transition.badge.name,
                },
                {"source": "quest", "quest_id": progress.quest.id},
            )


# ============================================================================
# QuestService
# ============================================================================


class QuestService(BaseService):
    """
    Public Methods
    --------------
    - start_quest() -> Begin a quest for a subject
    """

    def __init__(
        self,
        store: GamificationStore,
        serializer: SubjectSerializer,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger or get_logger(__name__))
        self._store = store
        self._serializer = serializer

    async def start_quest(
        self,
        subject_id: Any,
        quest_id: int,
        now: Optional[datetime] = None,
    ) -> UserQuestState:
        """
        Start `quest_id` for the subject.

        Args:
            subject_id: Subject starting the quest
            quest_id: Quest to start
            now: Clock override (defaults to UTC now)

        Returns:
            The new in-progress state at step 1

        Raises:
            ValidationError: If arguments are malformed
            NotFoundError: If the quest does not exist
            InvalidOperationError: If the quest is inactive, outside its
                availability window, or was already started by the subject
            SubjectLockError: If the per-subject lock cannot be acquired
        """
        subject_id = self.validate_subject_id(subject_id)
        self.validate_positive_int(quest_id, "quest_id")
        now = now or datetime.now(timezone.utc)

        async with self._serializer.hold(subject_id):
            async with self._store.unit_of_work() as uow:
                quest = await uow.get_quest(quest_id)
                if quest is None:
                    raise NotFoundError("Quest", quest_id)
                if not quest.is_available(now):
                    raise InvalidOperationError("start_quest", "Quest is not available")

                existing = await uow.get_user_quest(subject_id, quest_id)
                if existing is not None:
                    reason = (
                        "Quest already completed"
                        if existing.is_completed
                        else "Quest already in progress"
                    )
                    raise InvalidOperationError("start_quest", reason)

                state = UserQuestState(
                    subject_id=subject_id,
                    quest_id=quest_id,
                    started_at=now,
                    expires_at=quest.expiry_from(now),
                )
                if not await uow.insert_user_quest(state):
                    raise InvalidOperationError("start_quest", "Quest already in progress")

        self.log_operation("start_quest", subject_id=subject_id, quest_id=quest_id)
        await self.emit_event(
            "quest_started",
            {
                "subject_id": subject_id,
                "quest_id": quest_id,
                "quest_name": quest.name,
                "expires_at": state.expires_at.isoformat() if state.expires_at else None,
            },
        )
        return state
