"""
Idempotent Reward Granter

Purpose
-------
Apply XP/coins and record badge/achievement grants. Every grant that must
happen at most once is anchored on a database unique constraint; the
granter reports a lost race as `False` instead of raising.

Domain
------
- `grant_rewards`: one ledger entry + atomic aggregate increment + level
- `award_badge`: insert UserBadge, then the badge's own `xp_value`
- `unlock_achievement`: insert UserAchievement (no reward of its own)

Design Notes
------------
- All operations accept an optional `uow`. When given, they join the
  caller's unit of work (a rule or quest transition) so that a later failure
  rolls the grant back too. Without one they open their own.
- `grant_rewards` has no idempotency key; callers guard it with the grant
  uniqueness checks or the quest optimistic guard.
- Events are not published here; the caller publishes after its unit of
  work commits.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, AsyncIterator, Optional

from passport.domain.models.gamification import (
    BadgeDefinition,
    ProgressSnapshot,
    RewardAmount,
)
from passport.modules.shared.base_service import BaseService
from passport.modules.shared.exceptions import ValidationError
from passport.modules.shared.formulas import DEFAULT_XP_PER_LEVEL, calculate_level

if TYPE_CHECKING:
    from logging import Logger

    from passport.core.config.manager import ConfigManager
    from passport.core.event.bus import EventBus

    from .store import GamificationStore, GamificationUnitOfWork


def badge_reason(badge: BadgeDefinition) -> str:
    return f"Badge Earned: {badge.name}"


class RewardGranter(BaseService):
    """
    Public Methods
    --------------
    - grant_rewards() -> Append ledger entry and increment XP/coins
    - award_badge() -> Grant a badge once, plus its XP value
    - unlock_achievement() -> Grant an achievement once
    """

    def __init__(
        self,
        store: GamificationStore,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store

    @asynccontextmanager
    async def _joined(
        self, uow: Optional[GamificationUnitOfWork]
    ) -> AsyncIterator[GamificationUnitOfWork]:
        if uow is not None:
            yield uow
            return
        async with self._store.unit_of_work() as own:
            yield own

    @property
    def xp_per_level(self) -> int:
        return int(self.get_config("gamification.xp_per_level", DEFAULT_XP_PER_LEVEL))

    # ========================================================================
    # XP / coins
    # ========================================================================

    async def grant_rewards(
        self,
        subject_id: str,
        amount: RewardAmount,
        reason: str,
        *,
        uow: Optional[GamificationUnitOfWork] = None,
    ) -> ProgressSnapshot:
        """
        Append one ledger entry and atomically increment the aggregate.

        Args:
            subject_id: Subject receiving the reward
            amount: XP and coins; at least one must be positive
            reason: Ledger reason, e.g. "Rule: First Trip"
            uow: Unit of work to join

        Returns:
            Aggregate after the increment, with the recomputed level

        Raises:
            ValidationError: If the amount is empty or the reason is blank
        """
        if amount.is_empty:
            raise ValidationError("amount", "reward must grant XP or coins")
        if not reason or not reason.strip():
            raise ValidationError("reason", "reward reason cannot be empty")

        async with self._joined(uow) as active:
            snapshot = await active.increment_rewards(subject_id, amount, reason)

            level = calculate_level(snapshot.total_xp, self.xp_per_level)
            if level != snapshot.level:
                await active.set_level(subject_id, level)
                snapshot = replace(snapshot, level=level)

        self.log.info(
            "Rewards granted",
            extra={
                "subject_id": subject_id,
                "xp": amount.xp,
                "coins": amount.coins,
                "reason": reason,
                "total_xp": snapshot.total_xp,
                "level": snapshot.level,
            },
        )
        return snapshot

    # ========================================================================
    # Badges & achievements
    # ========================================================================

    async def award_badge(
        self,
        subject_id: str,
        badge: BadgeDefinition,
        *,
        uow: Optional[GamificationUnitOfWork] = None,
    ) -> bool:
        """
        Grant `badge` to the subject exactly once.

        Returns:
            True if newly granted, False if the subject already held it.
            Any other insert failure propagates with no XP applied.
        """
        visual_state = self.get_config("gamification.badges.default_visual_state", "pristine")

        async with self._joined(uow) as active:
            inserted = await active.insert_user_badge(
                subject_id,
                badge.id,
                visual_state,
                datetime.now(timezone.utc),
            )
            if not inserted:
                self.log.debug(
                    "Badge already held",
                    extra={"subject_id": subject_id, "badge_id": badge.id},
                )
                return False

            if badge.xp_value > 0:
                await self.grant_rewards(
                    subject_id,
                    RewardAmount(xp=badge.xp_value),
                    badge_reason(badge),
                    uow=active,
                )

        self.log_operation(
            "award_badge",
            subject_id=subject_id,
            badge_id=badge.id,
            badge_name=badge.name,
        )
        return True

    async def unlock_achievement(
        self,
        subject_id: str,
        achievement_id: int,
        *,
        uow: Optional[GamificationUnitOfWork] = None,
    ) -> bool:
        async with self._joined(uow) as active:
            inserted = await active.insert_user_achievement(
                subject_id, achievement_id, datetime.now(timezone.utc)
            )

        if inserted:
            self.log_operation(
                "unlock_achievement",
                subject_id=subject_id,
                achievement_id=achievement_id,
            )
        return inserted
