"""
Passport Service

Purpose
-------
Read model for a subject's travel passport (level, XP, coins, badges,
achievements, quests) plus manual XP awards.

Domain
------
- get_passport: profile and held badges, newest first
- get_achievements: every achievement with unlock status
- get_quests: active / completed / available quests
- award_xp: manual XP grant, serialized per subject

Design Notes
------------
- Reads use a single unit of work each and never take the subject lock.
- `award_xp` goes through `RewardGranter.grant_rewards` under the subject
  lock so it cannot interleave with `GamificationEngine.process`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from passport.domain.models.gamification import ProgressSnapshot, QuestStatus, RewardAmount
from passport.modules.shared.base_service import BaseService
from passport.modules.shared.exceptions import ValidationError
from passport.modules.shared.formulas import DEFAULT_XP_PER_LEVEL, next_level_threshold

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager
    from passport.core.event.bus import EventBus

    from .rewards import RewardGranter
    from .serializer import SubjectSerializer
    from .store import GamificationStore


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class PassportService(BaseService):
    """
    Public Methods
    --------------
    - get_passport() -> Profile and badge collection
    - get_achievements() -> All achievements with unlock status
    - get_quests() -> Active, completed and available quests
    - award_xp() -> Manual XP grant
    """

    def __init__(
        self,
        store: GamificationStore,
        granter: RewardGranter,
        serializer: SubjectSerializer,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store
        self._granter = granter
        self._serializer = serializer

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_passport(self, subject_id: Any) -> Dict[str, Any]:
        """
        Get a subject's passport.

        Returns:
            Dict containing:
                - profile: {level, xp, coins, next_threshold}
                - badges: [{badge, earned_at, visual_state}], newest first

        Example:
            >>> passport = await service.get_passport("u-42")
            >>> passport["profile"]["level"]
            3
        """
        subject_id = self.validate_subject_id(subject_id)

        async with self._store.unit_of_work() as uow:
            progress = await uow.get_progress(subject_id)
            earned = await uow.list_user_badges(subject_id)

        progress = progress or ProgressSnapshot(subject_id=subject_id)
        xp_per_level = int(self.get_config("gamification.xp_per_level", DEFAULT_XP_PER_LEVEL))

        return {
            "profile": {
                "subject_id": subject_id,
                "level": progress.level,
                "xp": progress.total_xp,
                "coins": progress.coins,
                "next_threshold": next_level_threshold(progress.level, xp_per_level),
            },
            "badges": [
                {
                    "badge": {
                        "id": item.badge.id,
                        "slug": item.badge.slug,
                        "name": item.badge.name,
                        "description": item.badge.description,
                        "icon": item.badge.icon,
                        "xp_value": item.badge.xp_value,
                    },
                    "earned_at": _iso(item.earned_at),
                    "visual_state": item.visual_state,
                }
                for item in earned
            ],
        }

    async def get_achievements(self, subject_id: Any) -> List[Dict[str, Any]]:
        subject_id = self.validate_subject_id(subject_id)

        async with self._store.unit_of_work() as uow:
            achievements = await uow.list_achievements()
            unlocked = await uow.list_user_achievements(subject_id)

        unlocked_at = {item.achievement.id: item.unlocked_at for item in unlocked}
        return [
            {
                "id": achievement.id,
                "slug": achievement.slug,
                "name": achievement.name,
                "description": achievement.description,
                "tier": achievement.tier,
                "unlocked": achievement.id in unlocked_at,
                "unlocked_at": _iso(unlocked_at.get(achievement.id)),
            }
            for achievement in achievements
        ]

    async def get_quests(
        self, subject_id: Any, now: Optional[datetime] = None
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Split quests into `active`, `completed` and `available`.

        `active` excludes expired rows; `available` lists active quests in
        their date window that the subject has never started.
        """
        subject_id = self.validate_subject_id(subject_id)
        now = now or datetime.now(timezone.utc)

        async with self._store.unit_of_work() as uow:
            catalog = {quest.id: quest for quest in await uow.list_active_quests()}
            states = await uow.list_user_quests(subject_id)
            for state in states:
                if state.quest_id not in catalog:
                    quest = await uow.get_quest(state.quest_id)
                    if quest is not None:
                        catalog[quest.id] = quest

        started = {state.quest_id for state in states}
        active: List[Dict[str, Any]] = []
        completed: List[Dict[str, Any]] = []

        for state in states:
            quest = catalog.get(state.quest_id)
            if quest is None:
                continue
            entry = {
                "quest_id": quest.id,
                "slug": quest.slug,
                "name": quest.name,
                "quest_type": quest.quest_type,
                "status": state.status.value,
                "current_step": state.current_step,
                "step_count": quest.step_count,
                "progress": {str(step): done for step, done in sorted(state.progress.items())},
                "started_at": _iso(state.started_at),
                "expires_at": _iso(state.expires_at),
                "completed_at": _iso(state.completed_at),
            }
            if state.status is QuestStatus.COMPLETED:
                completed.append(entry)
            elif not state.is_expired(now):
                active.append(entry)

        available = [
            {
                "quest_id": quest.id,
                "slug": quest.slug,
                "name": quest.name,
                "quest_type": quest.quest_type,
                "description": quest.description,
                "step_count": quest.step_count,
                "completion_xp": quest.completion_xp,
                "completion_coins": quest.completion_coins,
                "time_limit_days": quest.time_limit_days,
            }
            for quest in catalog.values()
            if quest.id not in started and quest.is_available(now)
        ]
        available.sort(key=lambda item: item["quest_id"])

        return {"active": active, "completed": completed, "available": available}

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def award_xp(self, subject_id: Any, amount: int, reason: str) -> ProgressSnapshot:
        """
        Grant XP outside the rule engine (support tooling, promotions).

        Raises:
            ValidationError: If amount is not a positive integer or the
                reason is blank
            SubjectLockError: If the per-subject lock cannot be acquired
        """
        subject_id = self.validate_subject_id(subject_id)
        self.validate_positive_int(amount, "amount")
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("reason", "reason cannot be empty")

        async with self._serializer.hold(subject_id):
            snapshot = await self._granter.grant_rewards(
                subject_id, RewardAmount(xp=amount), reason
            )

        self.log_operation(
            "award_xp",
            subject_id=subject_id,
            amount=amount,
            reason=reason,
            total_xp=snapshot.total_xp,
        )
        await self.emit_event(
            "xp_awarded",
            {
                "subject_id": subject_id,
                "amount": amount,
                "reason": reason,
                "total_xp": snapshot.total_xp,
                "level": snapshot.level,
            },
        )
        return snapshot
