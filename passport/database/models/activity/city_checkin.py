"""
CityCheckin: a user checking in to a city.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, utcnow


class CityCheckin(Base, IdMixin):
    __tablename__ = "city_checkins"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    city_name: Mapped[str] = mapped_column(String(200), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
