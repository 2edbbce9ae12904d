"""
Quest: ordered multi-step challenge definition.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, JSONType, TimestampMixin
from ..enums import QuestType


class Quest(Base, IdMixin, TimestampMixin):
    """
    Quest definition.

    `steps` is a JSON list of
    `{step_number, trigger_event, title, condition, reward: {xp, coins}}`
    numbered 1..N.
    """

    __tablename__ = "quests"

    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    quest_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=QuestType.STANDARD.value,
    )

    steps: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    completion_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_badge_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("badges.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    time_limit_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
