"""
Gamification ORM models.

Exports:
- Achievement
- Badge
- GamificationRule
- Quest
- RewardLedgerEntry
- SubjectProgress
- UserAchievement
- UserBadge
- UserQuest
"""

from .achievement import Achievement
from .badge import Badge
from .quest import Quest
from .reward_ledger import RewardLedgerEntry
from .rule import GamificationRule
from .subject_progress import SubjectProgress
from .user_achievement import UserAchievement
from .user_badge import UserBadge
from .user_quest import UserQuest

__all__ = [
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
