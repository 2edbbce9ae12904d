"""
SubjectProgress: aggregate XP / coins / level per subject.
Schema only.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, TimestampMixin


class SubjectProgress(Base, TimestampMixin):
    """
    Mutated only by atomic `UPDATE ... SET total_xp = total_xp + :xp`
    statements issued alongside a ledger insert.
    """

    __tablename__ = "subject_progress"

    subject_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    coins: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
