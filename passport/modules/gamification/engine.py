"""
Gamification Engine Facade

Purpose
-------
Single entry point for activity events:

    process(subject_id, trigger_event, context) -> newly granted badges

Flow
----
    per-subject lock
      -> RuleMatcher.match_rules (-> legacy badges when no rules exist)
      -> QuestProgressMachine.advance
    -> badges from rules (or legacy) + quest completion badges

Design Notes
------------
- Quests are advanced on every event, including events the legacy
  evaluator handled.
- Reward-processing failures never escape `process`; the components log
  them per rule / per quest. Lock failures are logged here and yield `[]`.
- Every record emitted inside `process` carries the subject, the trigger
  and a correlation id through `LogContext`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Mapping, Optional

from passport.core.exceptions import PassportInfrastructureException, SubjectLockError
from passport.core.logging.logger import LogContext, get_logger
from passport.domain.models.gamification import BadgeDefinition
from passport.modules.shared.base_service import BaseService
from passport.modules.shared.exceptions import ValidationError

from .conditions import ConditionResolver
from .counts import CountAggregator
from .legacy import LegacyBadgeEvaluator
from .quests import QuestAdvanceResult, QuestProgressMachine
from .rewards import RewardGranter
from .rules import RuleMatcher, RuleMatchResult
from .serializer import SubjectSerializer

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager
    from passport.core.event.bus import EventBus

    from .store import GamificationStore


class GamificationEngine(BaseService):
    """
    Public Methods
    --------------
    - process() -> Evaluate rules and quests for one activity event
    - build() -> Wire an engine and its components over a store
    """

    def __init__(
        self,
        rules: RuleMatcher,
        quests: QuestProgressMachine,
        serializer: SubjectSerializer,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.rules = rules
        self.quests = quests
        self.serializer = serializer

    @classmethod
    def build(
        cls,
        store: GamificationStore,
        config_manager: ConfigManager,
        event_bus: EventBus,
        serializer: Optional[SubjectSerializer] = None,
    ) -> GamificationEngine:
        """
        Assemble the engine with one shared granter and condition resolver.

        Pass `serializer` to share per-subject locks with other services
        (QuestService, PassportService).
        """
        serializer = serializer or SubjectSerializer(
            config_manager, get_logger(f"{__name__}.SubjectSerializer")
        )
        granter = RewardGranter(
            store, config_manager, event_bus, get_logger(f"{__name__}.RewardGranter")
        )
        resolver = ConditionResolver(CountAggregator(get_logger(f"{__name__}.CountAggregator")))
        legacy = LegacyBadgeEvaluator(
            store,
            granter,
            config_manager,
            event_bus,
            get_logger(f"{__name__}.LegacyBadgeEvaluator"),
        )
        rules = RuleMatcher(
            store,
            resolver,
            granter,
            legacy,
            config_manager,
            event_bus,
            get_logger(f"{__name__}.RuleMatcher"),
        )
        quests = QuestProgressMachine(
            store,
            resolver,
            granter,
            config_manager,
            event_bus,
            get_logger(f"{__name__}.QuestProgressMachine"),
        )
        return cls(
            rules,
            quests,
            serializer,
            config_manager,
            event_bus,
            get_logger(__name__),
        )

    async def process(
        self,
        subject_id: Any,
        trigger_event: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[BadgeDefinition]:
        """
        Evaluate one activity event for a subject.

        Args:
            subject_id: Subject that performed the action
            trigger_event: Action name, e.g. "check_in", "trip_created"
            context: Event metadata (city_name, business_type, ...)

        Returns:
            Badges newly granted by this event, rules (or legacy) first,
            then quest completion badges. Empty when the subject lock could
            not be taken.

        Raises:
            ValidationError: If subject_id or trigger_event is blank
        """
        subject_id = self.validate_subject_id(subject_id)
        if not isinstance(trigger_event, str) or not trigger_event.strip():
            raise ValidationError("trigger_event", "trigger_event cannot be empty")
        context = dict(context or {})

        async with LogContext(
            subject_id=subject_id,
            trigger_event=trigger_event,
            component="gamification",
            operation="process",
        ):
            try:
                async with self.serializer.hold(subject_id):
                    matched = await self.rules.match_rules(trigger_event, subject_id, context)
                    advanced = await self.quests.advance(subject_id, trigger_event, context)
            except SubjectLockError as exc:
                self.log.warning(
                    "Gamification event dropped: subject lock unavailable",
                    extra={"subject_id": subject_id, **exc.details},
                )
                return []
            except PassportInfrastructureException as exc:
                self.log_error(
                    "process",
                    exc,
                    subject_id=subject_id,
                    trigger_event=trigger_event,
                )
                return []

            badges = self._collect_badges(matched, advanced)
            self.log_operation(
                "process",
                subject_id=subject_id,
                trigger_event=trigger_event,
                used_legacy=matched.used_legacy,
                badges_awarded=len(badges),
                rule_causes=len(matched.granted_causes),
                quest_steps=len(advanced.steps_completed),
                quests_completed=len(advanced.quests_completed),
            )
            return badges

    @staticmethod
    def _collect_badges(
        matched: RuleMatchResult, advanced: QuestAdvanceResult
    ) -> List[BadgeDefinition]:
        badges = list(matched.granted_badges)
        seen = {badge.id for badge in badges}
        for badge in advanced.granted_badges:
            if badge.id not in seen:
                badges.append(badge)
                seen.add(badge.id)
        return badges
