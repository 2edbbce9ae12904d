"""
Database Model Enums
====================

Type-safe constants for categorical gamification columns. Columns store the
`.value` strings so rows stay readable from plain SQL.
"""

from __future__ import annotations

import enum


class QuestType(str, enum.Enum):
    STANDARD = "standard"
    DAILY = "daily"
    WEEKLY = "weekly"
    SEASONAL = "seasonal"


class AchievementTier(str, enum.Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class BadgeVisualState(str, enum.Enum):
    """
    How a held badge is rendered in the passport.

    Newly earned badges start `pristine`; the product ages them over time.
    """

    PRISTINE = "pristine"
    WORN = "worn"
    FADED = "faded"
