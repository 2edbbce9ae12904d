"""
Gamification value objects.

Purpose
-------
Immutable, validated views of catalog definitions (rules, badges,
achievements, quests) and subject state (quest progress, aggregate XP,
ledger entries). Engine components only ever see these types; the SQL
store converts ORM rows through the `from_db` factories and the in-memory
test store builds them directly.

Design Notes
------------
- All types are frozen dataclasses validated in `__post_init__`.
- Conditions stay as raw mappings here; they are parsed by
  `passport.modules.gamification.conditions` at evaluation time so a
  malformed condition degrades a single rule instead of failing the load.
- Stored columns that cannot be coerced (a non-mapping criteria, a step
  number of "one") surface as `DomainValidationError` like any other
  invariant, so callers guard a single row with one except clause.
- Quest progress keys are ints in the domain. JSON storage uses string
  keys; `normalize_progress` converts either form.
"""

from __future__ import annotations

import enum
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Iterator, Mapping, Optional, Tuple

from passport.domain.models.base import (
    DomainValidationError,
    validate_non_negative,
    validate_not_empty,
    validate_positive,
)

if TYPE_CHECKING:
    from passport.database.models.gamification.achievement import Achievement as AchievementDB
    from passport.database.models.gamification.badge import Badge as BadgeDB
    from passport.database.models.gamification.quest import Quest as QuestDB
    from passport.database.models.gamification.rule import GamificationRule as RuleDB
    from passport.database.models.gamification.user_quest import UserQuest as UserQuestDB


@contextmanager
def stored_value(field_name: str) -> Iterator[None]:
    """Re-raise coercion failures on a stored value as DomainValidationError."""
    try:
        yield
    except (TypeError, ValueError, AttributeError) as exc:
        raise DomainValidationError(f"malformed {field_name}: {exc}", field=field_name) from exc


class QuestStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def normalize_progress(raw: Optional[Mapping[Any, Any]]) -> Dict[int, bool]:
    """
    Coerce a stored progress map to `{step_number: True}`.

    Keys that are not integers and false values are dropped.
    """
    progress: Dict[int, bool] = {}
    for key, value in (raw or {}).items():
        try:
            step = int(key)
        except (TypeError, ValueError):
            continue
        if value:
            progress[step] = True
    return progress


# ============================================================================
# REWARDS
# ============================================================================


@dataclass(frozen=True)
class RewardAmount:
    """XP and coins granted together under one ledger entry."""

    xp: int = 0
    coins: int = 0

    def __post_init__(self) -> None:
        validate_non_negative(self.xp, "xp")
        validate_non_negative(self.coins, "coins")

    @property
    def is_empty(self) -> bool:
        return self.xp == 0 and self.coins == 0

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> Optional[RewardAmount]:
        """Build from `{"xp": .., "coins": ..}`; None or all-zero yields None."""
        if not raw:
            return None
        with stored_value("reward"):
            amount = cls(xp=int(raw.get("xp") or 0), coins=int(raw.get("coins") or 0))
        return None if amount.is_empty else amount


# ============================================================================
# CATALOG DEFINITIONS
# ============================================================================


@dataclass(frozen=True)
class BadgeDefinition:
    id: int
    name: str
    slug: str = ""
    xp_value: int = 0
    criteria: Mapping[str, Any] = field(default_factory=dict)
    description: Optional[str] = None
    icon: Optional[str] = None

    def __post_init__(self) -> None:
        validate_not_empty(self.name, "name")
        validate_non_negative(self.xp_value, "xp_value")

    @classmethod
    def from_db(cls, row: BadgeDB) -> BadgeDefinition:
        with stored_value("criteria"):
            criteria = dict(row.criteria or {})
        return cls(
            id=row.id,
            name=row.name,
            slug=row.slug,
            xp_value=row.xp_value or 0,
            criteria=criteria,
            description=row.description,
            icon=row.icon,
        )


@dataclass(frozen=True)
class AchievementDefinition:
    id: int
    name: str
    slug: str = ""
    tier: str = "bronze"
    criteria: Mapping[str, Any] = field(default_factory=dict)
    description: Optional[str] = None

    def __post_init__(self) -> None:
        validate_not_empty(self.name, "name")

    @classmethod
    def from_db(cls, row: AchievementDB) -> AchievementDefinition:
        with stored_value("criteria"):
            criteria = dict(row.criteria or {})
        return cls(
            id=row.id,
            name=row.name,
            slug=row.slug,
            tier=row.tier,
            criteria=criteria,
            description=row.description,
        )


@dataclass(frozen=True)
class RuleDefinition:
    """
    A trigger-scoped, condition-gated reward definition.

    `priority` orders evaluation (higher first); it never decides which of
    several matching rules fire.
    """

    id: int
    name: str
    trigger_event: str
    condition: Mapping[str, Any] = field(default_factory=dict)
    priority: int = 0
    is_active: bool = True
    badge_id: Optional[int] = None
    achievement_id: Optional[int] = None
    xp_reward: int = 0
    coins_reward: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        validate_not_empty(self.trigger_event, "trigger_event")
        validate_non_negative(self.xp_reward, "xp_reward")
        validate_non_negative(self.coins_reward, "coins_reward")

    @property
    def reward(self) -> RewardAmount:
        return RewardAmount(xp=self.xp_reward, coins=self.coins_reward)

    @classmethod
    def from_db(cls, row: RuleDB) -> RuleDefinition:
        with stored_value("metadata"):
            metadata = dict(row.rule_metadata or {})
        return cls(
            id=row.id,
            name=row.name,
            trigger_event=row.trigger_event,
            condition=row.condition if isinstance(row.condition, dict) else {},
            priority=row.priority,
            is_active=row.is_active,
            badge_id=row.badge_id,
            achievement_id=row.achievement_id,
            xp_reward=row.xp_reward or 0,
            coins_reward=row.coins_reward or 0,
            metadata=metadata,
        )


@dataclass(frozen=True)
class QuestStep:
    step_number: int
    trigger_event: str
    title: str = ""
    condition: Optional[Mapping[str, Any]] = None
    reward: Optional[RewardAmount] = None

    def __post_init__(self) -> None:
        validate_positive(self.step_number, "step_number")
        validate_not_empty(self.trigger_event, "trigger_event")

    @property
    def display_title(self) -> str:
        return self.title or f"Step {self.step_number}"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], index: int) -> QuestStep:
        """Build from the stored JSON step; `index` is the 1-based position."""
        with stored_value(f"steps[{index}]"):
            reward = raw.get("reward")
            if reward is None and ("xp" in raw or "coins" in raw):
                reward = {"xp": raw.get("xp"), "coins": raw.get("coins")}
            step_number = int(raw.get("step_number") or raw.get("step") or index)
            trigger_event = str(raw.get("trigger_event") or raw.get("trigger") or "")
            title = str(raw.get("title") or "")
            condition = raw.get("condition")
        return cls(
            step_number=step_number,
            trigger_event=trigger_event,
            title=title,
            condition=condition,
            reward=RewardAmount.from_mapping(reward),
        )


@dataclass(frozen=True)
class QuestDefinition:
    """
    An ordered sequence of steps culminating in completion rewards.

    Step numbers must be 1..N with no gaps.
    """

    id: int
    name: str
    steps: Tuple[QuestStep, ...]
    slug: str = ""
    quest_type: str = "standard"
    completion_xp: int = 0
    completion_coins: int = 0
    completion_badge_id: Optional[int] = None
    is_active: bool = True
    time_limit_days: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        validate_not_empty(self.name, "name")
        validate_non_negative(self.completion_xp, "completion_xp")
        validate_non_negative(self.completion_coins, "completion_coins")
        numbers = [step.step_number for step in self.steps]
        if numbers != list(range(1, len(numbers) + 1)):
            raise DomainValidationError(
                f"quest steps must be numbered 1..N contiguously, got {numbers}",
                field="steps",
            )

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def completion_reward(self) -> RewardAmount:
        return RewardAmount(xp=self.completion_xp, coins=self.completion_coins)

    def step(self, step_number: int) -> Optional[QuestStep]:
        if 1 <= step_number <= len(self.steps):
            return self.steps[step_number - 1]
        return None

    def is_available(self, now: datetime) -> bool:
        """Active and inside the optional start/end window."""
        if not self.is_active:
            return False
        if self.start_date is not None and now < self.start_date:
            return False
        if self.end_date is not None and now > self.end_date:
            return False
        return True

    def expiry_from(self, started_at: datetime) -> Optional[datetime]:
        if not self.time_limit_days:
            return None
        return started_at + timedelta(days=self.time_limit_days)

    @classmethod
    def from_db(cls, row: QuestDB) -> QuestDefinition:
        raw_steps = row.steps if isinstance(row.steps, list) else []
        steps = tuple(
            sorted(
                (QuestStep.from_mapping(raw, index) for index, raw in enumerate(raw_steps, 1)),
                key=lambda step: step.step_number,
            )
        )
        return cls(
            id=row.id,
            name=row.name,
            slug=row.slug,
            quest_type=row.quest_type,
            steps=steps,
            completion_xp=row.completion_xp or 0,
            completion_coins=row.completion_coins or 0,
            completion_badge_id=row.completion_badge_id,
            is_active=row.is_active,
            time_limit_days=row.time_limit_days,
            start_date=row.start_date,
            end_date=row.end_date,
            description=row.description,
        )


# ============================================================================
# SUBJECT STATE
# ============================================================================


@dataclass(frozen=True)
class UserQuestState:
    """Persisted progress of one subject through one quest."""

    subject_id: str
    quest_id: int
    status: QuestStatus = QuestStatus.IN_PROGRESS
    current_step: int = 1
    progress: Mapping[int, bool] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        validate_positive(self.current_step, "current_step")

    @property
    def is_completed(self) -> bool:
        return self.status is QuestStatus.COMPLETED

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    @classmethod
    def from_db(cls, row: UserQuestDB) -> UserQuestState:
        return cls(
            subject_id=row.subject_id,
            quest_id=row.quest_id,
            status=QuestStatus(row.status),
            current_step=row.current_step,
            progress=normalize_progress(row.progress),
            started_at=row.started_at,
            expires_at=row.expires_at,
            completed_at=row.completed_at,
        )


@dataclass(frozen=True)
class ProgressSnapshot:
    """Aggregate XP / coins / level for a subject after a grant."""

    subject_id: str
    total_xp: int = 0
    coins: int = 0
    level: int = 1

    def __post_init__(self) -> None:
        validate_non_negative(self.total_xp, "total_xp")
        validate_positive(self.level, "level")


@dataclass(frozen=True)
class LedgerEntry:
    subject_id: str
    xp: int
    coins: int
    reason: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class EarnedBadge:
    badge: BadgeDefinition
    earned_at: Optional[datetime]
    visual_state: str = "pristine"


@dataclass(frozen=True)
class UnlockedAchievement:
    achievement: AchievementDefinition
    unlocked_at: Optional[datetime]
