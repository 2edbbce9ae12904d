"""
UserQuest: a subject's progress through one quest.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, JSONType, TimestampMixin, utcnow
from passport.domain.models.gamification import QuestStatus


class UserQuest(Base, IdMixin, TimestampMixin):
    """
    One row per (subject, quest); quests are one-shot, so a completed row
    is never reset.

    `progress` maps the step number (as a JSON string key) to `true`.
    """

    __tablename__ = "user_quests"
    __table_args__ = (
        UniqueConstraint("subject_id", "quest_id", name="uq_user_quests_subject_quest"),
        Index("ix_user_quests_subject_status", "subject_id", "status"),
    )

    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)

    quest_id: Mapped[int] = mapped_column(
        ForeignKey("quests.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=QuestStatus.IN_PROGRESS.value,
    )

    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    progress: Mapped[Dict[str, bool]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
