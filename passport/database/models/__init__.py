"""
Passport ORM models.

Importing this package registers every table on `Base.metadata`, which
`DatabaseService.create_schema()` relies on.
"""

from .activity import Booking, CityCheckin, Review, Trip
from .enums import AchievementTier, BadgeVisualState, QuestType
from .gamification import (
    Achievement,
    Badge,
    GamificationRule,
    Quest,
    RewardLedgerEntry,
    SubjectProgress,
    UserAchievement,
    UserBadge,
    UserQuest,
)

__all__ = [
    # Activity
    "Booking",
    "CityCheckin",
    "Review",
    "Trip",
    # Enums
    "AchievementTier",
    "BadgeVisualState",
    "QuestType",
    # Gamification
    "Achievement",
    "Badge",
    "GamificationRule",
    "Quest",
    "RewardLedgerEntry",
    "SubjectProgress",
    "UserAchievement",
    "UserBadge",
    "UserQuest",
]
