"""
SQL Gamification Store

Purpose
-------
`GamificationStore` backed by SQLAlchemy 2.0 async sessions. Every unit of
work is one `DatabaseService.get_transaction()` block: commit on clean exit,
rollback and re-raise on error.

Design Notes
------------
- One `BaseRepository` per table; the unit of work composes them and converts
  rows to domain value objects through their `from_db` factories.
- Grant inserts go through `add_unique` (SAVEPOINT + IntegrityError), so a
  lost uniqueness race is reported as False without poisoning the
  transaction.
- Aggregate XP/coins change only through `UPDATE ... SET total_xp =
  total_xp + :xp RETURNING ...`; the row is created on first use.
- Quest progress writes are guarded on `(status, current_step)`.
- Catalog rows that fail domain validation (including JSON columns that
  cannot be coerced) are skipped one row at a time with a warning; the rest
  of the read still succeeds.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterator, Dict, List, Mapping, Optional, Tuple, Type

from sqlalchemy import select, update

from passport.core.database.base import utcnow
from passport.core.database.service import DatabaseService
from passport.core.exceptions import DatabaseError
from passport.core.logging.logger import get_logger
from passport.database.models import (
    Achievement,
    Badge,
    Booking,
    CityCheckin,
    GamificationRule,
    Quest,
    Review,
    RewardLedgerEntry,
    SubjectProgress,
    Trip,
    UserAchievement,
    UserBadge,
    UserQuest,
)
from passport.domain.models.base import DomainValidationError
from passport.domain.models.gamification import (
    AchievementDefinition,
    BadgeDefinition,
    EarnedBadge,
    LedgerEntry,
    ProgressSnapshot,
    QuestDefinition,
    QuestStatus,
    RewardAmount,
    RuleDefinition,
    UnlockedAchievement,
    UserQuestState,
)
from passport.modules.shared.base_repository import BaseRepository
from passport.modules.shared.exceptions import QuestStateConflictError

from .counts import KNOWN_COUNT_FIELDS
from .store import GamificationStore, GamificationUnitOfWork

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_ACTIVITY_MODELS: Dict[str, Type] = {
    "trips": Trip,
    "bookings": Booking,
    "reviews": Review,
    "city_checkins": CityCheckin,
}


# ============================================================================
# Repositories
# ============================================================================


class RuleRepository(BaseRepository[GamificationRule]):
    async def find_active_for_trigger(
        self, session: AsyncSession, trigger_event: str
    ) -> List[GamificationRule]:
        return await self.find_many_where(
            session,
            GamificationRule.trigger_event == trigger_event,
            GamificationRule.is_active.is_(True),
            order_by=[GamificationRule.priority.desc(), GamificationRule.id.asc()],
        )


class UserBadgeRepository(BaseRepository[UserBadge]):
    async def has_badge(self, session: AsyncSession, subject_id: str, badge_id: int) -> bool:
        return await self.exists(
            session,
            UserBadge.subject_id == subject_id,
            UserBadge.badge_id == badge_id,
        )


class UserAchievementRepository(BaseRepository[UserAchievement]):
    async def has_achievement(
        self, session: AsyncSession, subject_id: str, achievement_id: int
    ) -> bool:
        return await self.exists(
            session,
            UserAchievement.subject_id == subject_id,
            UserAchievement.achievement_id == achievement_id,
        )


class UserQuestRepository(BaseRepository[UserQuest]):
    pass


class SubjectProgressRepository(BaseRepository[SubjectProgress]):
    async def increment(
        self, session: AsyncSession, subject_id: str, xp: int, coins: int
    ) -> Optional[Tuple[int, int, int]]:
        """Atomic add; None when the subject has no progress row yet."""
        stmt = (
            update(SubjectProgress)
            .where(SubjectProgress.subject_id == subject_id)
            .values(
                total_xp=SubjectProgress.total_xp + xp,
                coins=SubjectProgress.coins + coins,
                updated_at=utcnow(),
            )
            .returning(
                SubjectProgress.total_xp,
                SubjectProgress.coins,
                SubjectProgress.level,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return int(row[0]), int(row[1]), int(row[2])


def _repo(model: Type, name: str) -> BaseRepository:
    return BaseRepository(model_class=model, logger=get_logger(f"{__name__}.{name}"))


# ============================================================================
# Unit of work
# ============================================================================


class SqlGamificationUnitOfWork(GamificationUnitOfWork):
    def __init__(self, session: AsyncSession, store: SqlGamificationStore) -> None:
        self.session = session
        self._s = store

    # ------------------------------------------------------------------ #
    # Rules & activity
    # ------------------------------------------------------------------ #

    async def fetch_active_rules(self, trigger_event: str) -> List[RuleDefinition]:
        rows = await self._s.rules.find_active_for_trigger(self.session, trigger_event)
        rules: List[RuleDefinition] = []
        for row in rows:
            try:
                rules.append(RuleDefinition.from_db(row))
            except DomainValidationError as exc:
                logger.warning(
                    "Skipping invalid gamification rule",
                    extra={"rule_id": row.id, "field": exc.field, "error": str(exc)},
                )
        return rules

    async def has_active_rules(self, trigger_event: str) -> bool:
        return await self._s.rules.exists(
            self.session,
            GamificationRule.trigger_event == trigger_event,
            GamificationRule.is_active.is_(True),
        )

    async def count_activity(self, field: str, subject_id: str) -> int:
        model = _ACTIVITY_MODELS[KNOWN_COUNT_FIELDS[field]]
        return await self._s.activity[model.__tablename__].count(
            self.session, model.user_id == subject_id
        )

    # ------------------------------------------------------------------ #
    # Catalog
    # ------------------------------------------------------------------ #

    async def get_badge(self, badge_id: int) -> Optional[BadgeDefinition]:
        row = await self._s.badges.get(self.session, badge_id)
        return self._badge_or_none(row) if row is not None else None

    async def list_badges(self) -> List[BadgeDefinition]:
        rows = await self._s.badges.find_many_where(self.session, order_by=[Badge.id.asc()])
        badges = [self._badge_or_none(row) for row in rows]
        return [badge for badge in badges if badge is not None]

    @staticmethod
    def _badge_or_none(row: Badge) -> Optional[BadgeDefinition]:
        try:
            return BadgeDefinition.from_db(row)
        except DomainValidationError as exc:
            logger.warning(
                "Skipping invalid badge definition",
                extra={"badge_id": row.id, "field": exc.field, "error": str(exc)},
            )
            return None

    async def get_achievement(self, achievement_id: int) -> Optional[AchievementDefinition]:
        row = await self._s.achievements.get(self.session, achievement_id)
        return AchievementDefinition.from_db(row) if row is not None else None

    async def list_achievements(self) -> List[AchievementDefinition]:
        rows = await self._s.achievements.find_many_where(
            self.session, order_by=[Achievement.id.asc()]
        )
        achievements: List[AchievementDefinition] = []
        for row in rows:
            try:
                achievements.append(AchievementDefinition.from_db(row))
            except DomainValidationError as exc:
                logger.warning(
                    "Skipping invalid achievement definition",
                    extra={"achievement_id": row.id, "field": exc.field, "error": str(exc)},
                )
        return achievements

    async def get_quest(self, quest_id: int) -> Optional[QuestDefinition]:
        row = await self._s.quests.get(self.session, quest_id)
        return self._quest_or_none(row) if row is not None else None

    async def list_active_quests(self) -> List[QuestDefinition]:
        rows = await self._s.quests.find_many_where(
            self.session,
            Quest.is_active.is_(True),
            order_by=[Quest.id.asc()],
        )
        quests = [self._quest_or_none(row) for row in rows]
        return [quest for quest in quests if quest is not None]

    @staticmethod
    def _quest_or_none(row: Quest) -> Optional[QuestDefinition]:
        try:
            return QuestDefinition.from_db(row)
        except DomainValidationError as exc:
            logger.warning(
                "Skipping invalid quest definition",
                extra={"quest_id": row.id, "field": exc.field, "error": str(exc)},
            )
            return None

    # ------------------------------------------------------------------ #
    # Grants
    # ------------------------------------------------------------------ #

    async def has_badge(self, subject_id: str, badge_id: int) -> bool:
        return await self._s.user_badges.has_badge(self.session, subject_id, badge_id)

    async def has_achievement(self, subject_id: str, achievement_id: int) -> bool:
        return await self._s.user_achievements.has_achievement(
            self.session, subject_id, achievement_id
        )

    async def insert_user_badge(
        self,
        subject_id: str,
        badge_id: int,
        visual_state: str,
        earned_at: datetime,
    ) -> bool:
        return await self._s.user_badges.add_unique(
            self.session,
            UserBadge(
                subject_id=subject_id,
                badge_id=badge_id,
                visual_state=visual_state,
                earned_at=earned_at,
            ),
        )

    async def insert_user_achievement(
        self,
        subject_id: str,
        achievement_id: int,
        unlocked_at: datetime,
    ) -> bool:
        return await self._s.user_achievements.add_unique(
            self.session,
            UserAchievement(
                subject_id=subject_id,
                achievement_id=achievement_id,
                unlocked_at=unlocked_at,
            ),
        )

    async def list_user_badges(self, subject_id: str) -> List[EarnedBadge]:
        stmt = (
            select(UserBadge, Badge)
            .join(Badge, Badge.id == UserBadge.badge_id)
            .where(UserBadge.subject_id == subject_id)
            .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
        )
        result = await self.session.execute(stmt)

        earned: List[EarnedBadge] = []
        for user_badge, badge_row in result.all():
            badge = self._badge_or_none(badge_row)
            if badge is not None:
                earned.append(
                    EarnedBadge(
                        badge=badge,
                        earned_at=user_badge.earned_at,
                        visual_state=user_badge.visual_state,
                    )
                )
        return earned

    async def list_user_achievements(self, subject_id: str) -> List[UnlockedAchievement]:
        stmt = (
            select(UserAchievement, Achievement)
            .join(Achievement, Achievement.id == UserAchievement.achievement_id)
            .where(UserAchievement.subject_id == subject_id)
            .order_by(UserAchievement.unlocked_at.desc())
        )
        result = await self.session.execute(stmt)
        return [
            UnlockedAchievement(
                achievement=AchievementDefinition.from_db(achievement),
                unlocked_at=user_achievement.unlocked_at,
            )
            for user_achievement, achievement in result.all()
        ]

    # ------------------------------------------------------------------ #
    # Quests
    # ------------------------------------------------------------------ #

    async def fetch_in_progress_quests(
        self, subject_id: str
    ) -> List[Tuple[UserQuestState, QuestDefinition]]:
        stmt = (
            select(UserQuest, Quest)
            .join(Quest, Quest.id == UserQuest.quest_id)
            .where(
                UserQuest.subject_id == subject_id,
                UserQuest.status == QuestStatus.IN_PROGRESS.value,
                Quest.is_active.is_(True),
            )
            .order_by(UserQuest.quest_id.asc())
        )
        result = await self.session.execute(stmt)

        pairs: List[Tuple[UserQuestState, QuestDefinition]] = []
        for user_quest, quest_row in result.all():
            quest = self._quest_or_none(quest_row)
            if quest is not None:
                pairs.append((UserQuestState.from_db(user_quest), quest))
        return pairs

    async def get_user_quest(self, subject_id: str, quest_id: int) -> Optional[UserQuestState]:
        row = await self._s.user_quests.find_one_where(
            self.session,
            UserQuest.subject_id == subject_id,
            UserQuest.quest_id == quest_id,
        )
        return UserQuestState.from_db(row) if row is not None else None

    async def list_user_quests(self, subject_id: str) -> List[UserQuestState]:
        rows = await self._s.user_quests.find_many_where(
            self.session,
            UserQuest.subject_id == subject_id,
            order_by=[UserQuest.quest_id.asc()],
        )
        return [UserQuestState.from_db(row) for row in rows]

    async def insert_user_quest(self, state: UserQuestState) -> bool:
        return await self._s.user_quests.add_unique(
            self.session,
            UserQuest(
                subject_id=state.subject_id,
                quest_id=state.quest_id,
                status=state.status.value,
                current_step=state.current_step,
                progress=_progress_to_json(state.progress),
                started_at=state.started_at or utcnow(),
                expires_at=state.expires_at,
                completed_at=state.completed_at,
            ),
        )

    async def save_user_quest(self, state: UserQuestState, expected_step: int) -> None:
        stmt = (
            update(UserQuest)
            .where(
                UserQuest.subject_id == state.subject_id,
                UserQuest.quest_id == state.quest_id,
                UserQuest.status == QuestStatus.IN_PROGRESS.value,
                UserQuest.current_step == expected_step,
            )
            .values(
                status=state.status.value,
                current_step=state.current_step,
                progress=_progress_to_json(state.progress),
                completed_at=state.completed_at,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise QuestStateConflictError(state.subject_id, state.quest_id, expected_step)

    # ------------------------------------------------------------------ #
    # Progress & ledger
    # ------------------------------------------------------------------ #

    async def increment_rewards(
        self, subject_id: str, amount: RewardAmount, reason: str
    ) -> ProgressSnapshot:
        progress = self._s.progress

        totals = await progress.increment(self.session, subject_id, amount.xp, amount.coins)
        if totals is None:
            # first grant for this subject; a concurrent creator may win the insert
            await progress.add_unique(
                self.session,
                SubjectProgress(subject_id=subject_id, total_xp=0, coins=0, level=1),
            )
            totals = await progress.increment(self.session, subject_id, amount.xp, amount.coins)
            if totals is None:
                raise DatabaseError(
                    "increment_rewards", RuntimeError(f"progress row missing for {subject_id}")
                )

        self._s.ledger.add(
            self.session,
            RewardLedgerEntry(
                subject_id=subject_id,
                xp=amount.xp,
                coins=amount.coins,
                reason=reason[:255],
                created_at=utcnow(),
            ),
        )

        total_xp, coins, level = totals
        return ProgressSnapshot(subject_id=subject_id, total_xp=total_xp, coins=coins, level=level)

    async def set_level(self, subject_id: str, level: int) -> None:
        await self.session.execute(
            update(SubjectProgress)
            .where(SubjectProgress.subject_id == subject_id)
            .values(level=level)
            .execution_options(synchronize_session=False)
        )

    async def get_progress(self, subject_id: str) -> Optional[ProgressSnapshot]:
        result = await self.session.execute(
            select(
                SubjectProgress.total_xp,
                SubjectProgress.coins,
                SubjectProgress.level,
            ).where(SubjectProgress.subject_id == subject_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return ProgressSnapshot(
            subject_id=subject_id,
            total_xp=int(row[0]),
            coins=int(row[1]),
            level=int(row[2]),
        )

    async def list_ledger(self, subject_id: str) -> List[LedgerEntry]:
        rows = await self._s.ledger.find_many_where(
            self.session,
            RewardLedgerEntry.subject_id == subject_id,
            order_by=[RewardLedgerEntry.created_at.asc(), RewardLedgerEntry.id.asc()],
        )
        return [
            LedgerEntry(
                subject_id=row.subject_id,
                xp=row.xp,
                coins=row.coins,
                reason=row.reason,
                created_at=row.created_at,
            )
            for row in rows
        ]


def _progress_to_json(progress: Mapping[int, bool]) -> Dict[str, bool]:
    return {str(step): True for step, done in progress.items() if done}


# ============================================================================
# Store
# ============================================================================


class SqlGamificationStore(GamificationStore):
    """
    Production store. Requires `DatabaseService.initialize()` to have run.

    Example:
        >>> store = SqlGamificationStore()
        >>> async with store.unit_of_work() as uow:
        ...     rules = await uow.fetch_active_rules("check_in")
    """

    def __init__(self) -> None:
        self.rules = RuleRepository(GamificationRule, get_logger(f"{__name__}.RuleRepository"))
        self.badges = _repo(Badge, "BadgeRepository")
        self.achievements = _repo(Achievement, "AchievementRepository")
        self.quests = _repo(Quest, "QuestRepository")
        self.user_badges = UserBadgeRepository(
            UserBadge, get_logger(f"{__name__}.UserBadgeRepository")
        )
        self.user_achievements = UserAchievementRepository(
            UserAchievement, get_logger(f"{__name__}.UserAchievementRepository")
        )
        self.user_quests = UserQuestRepository(
            UserQuest, get_logger(f"{__name__}.UserQuestRepository")
        )
        self.progress = SubjectProgressRepository(
            SubjectProgress, get_logger(f"{__name__}.SubjectProgressRepository")
        )
        self.ledger = _repo(RewardLedgerEntry, "RewardLedgerRepository")
        self.activity = {
            table: _repo(model, f"{model.__name__}Repository")
            for table, model in _ACTIVITY_MODELS.items()
        }

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[SqlGamificationUnitOfWork]:
        async with DatabaseService.get_transaction() as session:
            yield SqlGamificationUnitOfWork(session, self)
