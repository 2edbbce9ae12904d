"""
UserAchievement: one row per (subject, achievement).
Schema only.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, utcnow


class UserAchievement(Base, IdMixin):
    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint(
            "subject_id",
            "achievement_id",
            name="uq_user_achievements_subject_achievement",
        ),
    )

    subject_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    achievement_id: Mapped[int] = mapped_column(
        ForeignKey("achievements.id", ondelete="CASCADE"),
        nullable=False,
    )

    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
