"""
Rule Matcher

Purpose
-------
Evaluate the active rules for a trigger event and grant what they reward.

Flow
----
1. Fetch active rules for the trigger (priority desc, id asc).
2. No active rule rows at all -> `NO_RULES` -> delegate entirely to the legacy badge
   evaluator. "Rules found, none matched" is an ordinary empty result.
3. Each rule runs in its own unit of work:
   condition -> already-held checks -> XP/coins -> badge -> achievement.
   Every matching rule fires; priority only orders evaluation.
4. A failed rule rolls back alone and evaluation continues.

Design Notes
------------
- A uniqueness loss on the badge or achievement insert raises
  `GrantConflictError` inside the unit of work, so the rule's XP/coins from
  step 3 are rolled back with it. Logged at DEBUG as "already granted".
- A failure to fetch rules is not "no rules": it is logged and the result
  is empty, with no legacy fallback. The same holds when active rule rows
  exist but all of them were skipped as malformed.
- Events are published only after the rule's unit of work has committed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Union

from passport.domain.models.gamification import (
    AchievementDefinition,
    BadgeDefinition,
    RuleDefinition,
)
from passport.modules.shared.base_service import BaseService
from passport.modules.shared.exceptions import GrantConflictError, NotFoundError

from .rewards import badge_reason

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager
    from passport.core.event.bus import EventBus

    from .conditions import ConditionResolver
    from .legacy import LegacyBadgeEvaluator
    from .rewards import RewardGranter
    from .store import GamificationStore


class _NoRules:
    def __repr__(self) -> str:
        return "NO_RULES"


NO_RULES = _NoRules()


def rule_reason(rule: RuleDefinition) -> str:
    return f"Rule: {rule.name}"


@dataclass
class RuleMatchResult:
    granted_badges: List[BadgeDefinition] = field(default_factory=list)
    granted_causes: List[str] = field(default_factory=list)
    unlocked_achievements: List[AchievementDefinition] = field(default_factory=list)
    used_legacy: bool = False


@dataclass(frozen=True)
class _RuleGrant:
    badge: Optional[BadgeDefinition]
    achievement: Optional[AchievementDefinition]


class RuleMatcher(BaseService):
    """
    Public Methods
    --------------
    - match_rules() -> Evaluate and grant every matching rule for an event
    """

    def __init__(
        self,
        store: GamificationStore,
        resolver: ConditionResolver,
        granter: RewardGranter,
        legacy: LegacyBadgeEvaluator,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store
        self._resolver = resolver
        self._granter = granter
        self._legacy = legacy

    async def match_rules(
        self,
        trigger_event: str,
        subject_id: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> RuleMatchResult:
        """
        Evaluate all active rules for `trigger_event`.

        Never raises; failures are logged and reflected as missing grants.
        """
        outcome = await self._evaluate(trigger_event, subject_id, context)
        if outcome is not NO_RULES:
            return outcome

        self.log.debug(
            "No active rules for trigger, using legacy badge criteria",
            extra={"trigger_event": trigger_event, "subject_id": subject_id},
        )
        try:
            badges = await self._legacy.evaluate_legacy_badges(
                trigger_event, subject_id, context
            )
        except Exception as exc:
            self.log_error(
                "evaluate_legacy_badges",
                exc,
                trigger_event=trigger_event,
                subject_id=subject_id,
            )
            return RuleMatchResult(used_legacy=True)

        return RuleMatchResult(
            granted_badges=list(badges),
            granted_causes=[badge_reason(badge) for badge in badges],
            used_legacy=True,
        )

    async def _evaluate(
        self,
        trigger_event: str,
        subject_id: str,
        context: Optional[Mapping[str, Any]],
    ) -> Union[RuleMatchResult, _NoRules]:
        try:
            async with self._store.unit_of_work() as uow:
                rules = await uow.fetch_active_rules(trigger_event)
                configured = bool(rules) or await uow.has_active_rules(trigger_event)
        except Exception as exc:
            self.log_error(
                "fetch_active_rules",
                exc,
                trigger_event=trigger_event,
                subject_id=subject_id,
            )
            return RuleMatchResult()

        if not configured:
            return NO_RULES
        if not rules:
            self.log.warning(
                "Every active rule for trigger is malformed; nothing evaluated",
                extra={"trigger_event": trigger_event, "subject_id": subject_id},
            )
            return RuleMatchResult()

        result = RuleMatchResult()
        for rule in rules:
            grant = await self._apply_rule(rule, subject_id, context)
            if grant is None:
                continue

            result.granted_causes.append(rule_reason(rule))
            if grant.badge is not None:
                result.granted_badges.append(grant.badge)
                await self.emit_event(
                    "badge_awarded",
                    {
                        "subject_id": subject_id,
                        "badge_id": grant.badge.id,
                        "badge_name": grant.badge.name,
                    },
                    {"source": "rule", "rule_id": rule.id, "trigger_event": trigger_event},
                )
            if grant.achievement is not None:
                result.unlocked_achievements.append(grant.achievement)
                await self.emit_event(
                    "achievement_unlocked",
                    {
                        "subject_id": subject_id,
                        "achievement_id": grant.achievement.id,
                        "achievement_name": grant.achievement.name,
                        "tier": grant.achievement.tier,
                    },
                    {"rule_id": rule.id, "trigger_event": trigger_event},
                )

        self.log_operation(
            "match_rules",
            trigger_event=trigger_event,
            subject_id=subject_id,
            rules_evaluated=len(rules),
            rules_fired=len(result.granted_causes),
            badges_awarded=len(result.granted_badges),
        )
        return result

    async def _apply_rule(
        self,
        rule: RuleDefinition,
        subject_id: str,
        context: Optional[Mapping[str, Any]],
    ) -> Optional[_RuleGrant]:
        """Run one rule in its own unit of work; None if it did not fire."""
        try:
            async with self._store.unit_of_work() as uow:
                if not await self._resolver.is_satisfied(
                    rule.condition, subject_id, context, uow
                ):
                    return None

                if rule.badge_id is not None and await uow.has_badge(subject_id, rule.badge_id):
                    return None
                if rule.achievement_id is not None and await uow.has_achievement(
                    subject_id, rule.achievement_id
                ):
                    return None

                if not rule.reward.is_empty:
                    await self._granter.grant_rewards(
                        subject_id, rule.reward, rule_reason(rule), uow=uow
                    )

                badge: Optional[BadgeDefinition] = None
                if rule.badge_id is not None:
                    badge = await uow.get_badge(rule.badge_id)
                    if badge is None:
                        raise NotFoundError("Badge", rule.badge_id)
                    if not await self._granter.award_badge(subject_id, badge, uow=uow):
                        raise GrantConflictError("badge", subject_id, badge.id)

                achievement: Optional[AchievementDefinition] = None
                if rule.achievement_id is not None:
                    achievement = await uow.get_achievement(rule.achievement_id)
                    if achievement is None:
                        raise NotFoundError("Achievement", rule.achievement_id)
                    if not await self._granter.unlock_achievement(
                        subject_id, achievement.id, uow=uow
                    ):
                        raise GrantConflictError("achievement", subject_id, achievement.id)

        except GrantConflictError as exc:
            self.log.debug(
                "Rule grant already applied concurrently",
                extra={"rule_id": rule.id, "subject_id": subject_id, **exc.details},
            )
            return None
        except Exception as exc:
            self.log_error("apply_rule", exc, rule_id=rule.id, subject_id=subject_id)
            return None

        return _RuleGrant(badge=badge, achievement=achievement)
