"""
Gamification data access interface.

Purpose
-------
The engine's only view of persistence. Each engine step opens a unit of work,
performs reads and writes through it, and either commits (clean exit) or
rolls back (exception) as a whole.

Implementations
---------------
- `SqlGamificationStore` (sql_store.py): SQLAlchemy async over
  `DatabaseService.get_transaction()`
- `InMemoryGamificationStore` (tests/fakes.py): snapshot/rollback dict store

Contract Notes
--------------
- `insert_user_badge` / `insert_user_achievement` / `insert_user_quest`
  return False on a uniqueness conflict and leave the unit of work usable.
- `increment_rewards` appends one ledger entry and applies an atomic
  increment to the aggregate, creating the aggregate on first use.
- `save_user_quest` writes only if the stored row is still `in_progress` at
  `expected_step`; otherwise it raises `QuestStateConflictError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, List, Optional, Tuple

from passport.domain.models.gamification import (
    AchievementDefinition,
    BadgeDefinition,
    EarnedBadge,
    LedgerEntry,
    ProgressSnapshot,
    QuestDefinition,
    RewardAmount,
    RuleDefinition,
    UnlockedAchievement,
    UserQuestState,
)


class GamificationUnitOfWork(ABC):
    """Operations available inside one transaction."""

    # ------------------------------------------------------------------ #
    # Rules & activity
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def fetch_active_rules(self, trigger_event: str) -> List[RuleDefinition]:
        """Active rules for the trigger, priority descending then id ascending."""

    @abstractmethod
    async def has_active_rules(self, trigger_event: str) -> bool:
        """
        Whether any active rule row exists for the trigger.

        Counts rows `fetch_active_rules` skipped as malformed, so callers can
        tell "no rules configured" from "every configured rule is broken".
        """

    @abstractmethod
    async def count_activity(self, field: str, subject_id: str) -> int:
        """Row count for a known count field (see counts.KNOWN_COUNT_FIELDS)."""

    # ------------------------------------------------------------------ #
    # Catalog
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def get_badge(self, badge_id: int) -> Optional[BadgeDefinition]: ...

    @abstractmethod
    async def list_badges(self) -> List[BadgeDefinition]: ...

    @abstractmethod
    async def get_achievement(self, achievement_id: int) -> Optional[AchievementDefinition]: ...

    @abstractmethod
    async def list_achievements(self) -> List[AchievementDefinition]: ...

    @abstractmethod
    async def get_quest(self, quest_id: int) -> Optional[QuestDefinition]: ...

    @abstractmethod
    async def list_active_quests(self) -> List[QuestDefinition]: ...

    # ------------------------------------------------------------------ #
    # Grants
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def has_badge(self, subject_id: str, badge_id: int) -> bool: ...

    @abstractmethod
    async def has_achievement(self, subject_id: str, achievement_id: int) -> bool: ...

    @abstractmethod
    async def insert_user_badge(
        self,
        subject_id: str,
        badge_id: int,
        visual_state: str,
        earned_at: datetime,
    ) -> bool: ...

    @abstractmethod
    async def insert_user_achievement(
        self,
        subject_id: str,
        achievement_id: int,
        unlocked_at: datetime,
    ) -> bool: ...

    @abstractmethod
    async def list_user_badges(self, subject_id: str) -> List[EarnedBadge]:
        """Held badges, newest first."""

    @abstractmethod
    async def list_user_achievements(self, subject_id: str) -> List[UnlockedAchievement]: ...

    # ------------------------------------------------------------------ #
    # Quests
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def fetch_in_progress_quests(
        self, subject_id: str
    ) -> List[Tuple[UserQuestState, QuestDefinition]]:
        """In-progress rows whose quest definition is active, by quest id."""

    @abstractmethod
    async def get_user_quest(self, subject_id: str, quest_id: int) -> Optional[UserQuestState]: ...

    @abstractmethod
    async def list_user_quests(self, subject_id: str) -> List[UserQuestState]: ...

    @abstractmethod
    async def insert_user_quest(self, state: UserQuestState) -> bool: ...

    @abstractmethod
    async def save_user_quest(self, state: UserQuestState, expected_step: int) -> None: ...

    # ------------------------------------------------------------------ #
    # Progress & ledger
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def increment_rewards(
        self, subject_id: str, amount: RewardAmount, reason: str
    ) -> ProgressSnapshot: ...

    @abstractmethod
    async def set_level(self, subject_id: str, level: int) -> None: ...

    @abstractmethod
    async def get_progress(self, subject_id: str) -> Optional[ProgressSnapshot]: ...

    @abstractmethod
    async def list_ledger(self, subject_id: str) -> List[LedgerEntry]:
        """Ledger entries, oldest first."""


class GamificationStore(ABC):
    @abstractmethod
    def unit_of_work(self) -> AsyncContextManager[GamificationUnitOfWork]:
        """Open a unit of work: commit on clean exit, roll back on exception."""
