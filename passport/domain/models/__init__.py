"""
Domain models for the Passport engine.

Domain models are separate from database models:
- Database models (passport/database/models/): SQLAlchemy schemas
- Domain models (passport/domain/models/): validated values and entities

The SQL store converts rows to domain values through `from_db` factories.
"""

from .base import (
    DomainEvent,
    DomainValidationError,
    Entity,
    validate_non_negative,
    validate_not_empty,
    validate_positive,
)
from .gamification import (
    AchievementDefinition,
    BadgeDefinition,
    EarnedBadge,
    LedgerEntry,
    ProgressSnapshot,
    QuestDefinition,
    QuestStatus,
    QuestStep,
    RewardAmount,
    RuleDefinition,
    UnlockedAchievement,
    UserQuestState,
    normalize_progress,
)
from .quest_progress import QuestProgress, StepOutcome

__all__ = [
    "DomainEvent",
    "DomainValidationError",
    "Entity",
    "validate_non_negative",
    "validate_not_empty",
    "validate_positive",
    "AchievementDefinition",
    "BadgeDefinition",
    "EarnedBadge",
    "LedgerEntry",
    "ProgressSnapshot",
    "QuestDefinition",
    "QuestStatus",
    "QuestStep",
    "RewardAmount",
    "RuleDefinition",
    "UnlockedAchievement",
    "UserQuestState",
    "normalize_progress",
    "QuestProgress",
    "StepOutcome",
]
