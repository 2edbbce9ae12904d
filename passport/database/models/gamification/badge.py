"""
Badge: awardable, once-per-subject catalog entry.
Schema only.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, JSONType, TimestampMixin


class Badge(Base, IdMixin, TimestampMixin):
    """
    Badge catalog.

    `criteria` is the legacy single-predicate condition consulted only when
    no active rule exists for a trigger event.
    """

    __tablename__ = "badges"

    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    xp_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    criteria: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
