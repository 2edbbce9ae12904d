"""
Achievement: once-per-subject milestone. Rewards come from the rule that
references it, never from the achievement itself.
Schema only.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, JSONType, TimestampMixin
from ..enums import AchievementTier


class Achievement(Base, IdMixin, TimestampMixin):
    __tablename__ = "achievements"

    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AchievementTier.BRONZE.value,
    )

    criteria: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
