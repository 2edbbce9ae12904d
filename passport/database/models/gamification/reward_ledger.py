"""
RewardLedgerEntry: immutable record of one reward application.
Pure schema only.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, utcnow


class RewardLedgerEntry(Base, IdMixin):
    """
    Append-only. The sum of a subject's entries equals the totals held in
    `subject_progress`.
    """

    __tablename__ = "reward_ledger"
    __table_args__ = (
        Index("ix_reward_ledger_subject_time", "subject_id", "created_at"),
    )

    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)

    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    reason: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
