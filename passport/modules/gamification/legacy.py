"""
Legacy Fallback Evaluator

Evaluates the `criteria` stored directly on badges. Used only when no
active rule exists for the trigger event; the rule matcher owns that
decision.

Supported
---------
    trigger "check_in" + criteria {"type": "location", "city_name": ...}

Everything else is ineligible. The only XP granted is the badge's own
`xp_value`, applied by `RewardGranter.award_badge`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Mapping, Optional

from passport.domain.models.gamification import BadgeDefinition
from passport.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager
    from passport.core.event.bus import EventBus

    from .rewards import RewardGranter
    from .store import GamificationStore

CHECK_IN = "check_in"


def legacy_criteria_match(
    trigger_event: str,
    criteria: Mapping[str, Any],
    context: Optional[Mapping[str, Any]],
) -> bool:
    if trigger_event != CHECK_IN or criteria.get("type") != "location":
        return False

    wanted = criteria.get("city_name")
    actual = (context or {}).get("city_name")
    if not isinstance(wanted, str) or not isinstance(actual, str) or not wanted:
        return False
    return wanted.lower() == actual.lower()


class LegacyBadgeEvaluator(BaseService):
    def __init__(
        self,
        store: GamificationStore,
        granter: RewardGranter,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store
        self._granter = granter

    async def evaluate_legacy_badges(
        self,
        trigger_event: str,
        subject_id: str,
        context: Optional[Mapping[str, Any]],
    ) -> List[BadgeDefinition]:
        """
        Award every unheld badge whose legacy criteria match.

        Each badge is granted in its own unit of work; a failure is logged
        and the next badge is still considered.
        """
        async with self._store.unit_of_work() as uow:
            badges = await uow.list_badges()

        awarded: List[BadgeDefinition] = []
        for badge in badges:
            if not legacy_criteria_match(trigger_event, badge.criteria, context):
                continue

            try:
                async with self._store.unit_of_work() as uow:
                    if await uow.has_badge(subject_id, badge.id):
                        continue
                    granted = await self._granter.award_badge(subject_id, badge, uow=uow)
            except Exception as exc:
                self.log_error(
                    "legacy_award_badge",
                    exc,
                    subject_id=subject_id,
                    badge_id=badge.id,
                )
                continue

            if granted:
                awarded.append(badge)
                await self.emit_event(
                    "badge_awarded",
                    {"subject_id": subject_id, "badge_id": badge.id, "badge_name": badge.name},
                    {"source": "legacy", "trigger_event": trigger_event},
                )

        if awarded:
            self.log_operation(
                "evaluate_legacy_badges",
                subject_id=subject_id,
                trigger_event=trigger_event,
                badges_awarded=len(awarded),
            )
        return awarded
