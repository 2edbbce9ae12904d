"""
UserBadge: one row per (subject, badge). The unique constraint is the
idempotency anchor for badge grants.
Schema only.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, utcnow
from ..enums import BadgeVisualState


class UserBadge(Base, IdMixin):
    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("subject_id", "badge_id", name="uq_user_badges_subject_badge"),
        Index("ix_user_badges_subject_earned", "subject_id", "earned_at"),
    )

    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)

    badge_id: Mapped[int] = mapped_column(
        ForeignKey("badges.id", ondelete="CASCADE"),
        nullable=False,
    )

    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    visual_state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BadgeVisualState.PRISTINE.value,
    )
