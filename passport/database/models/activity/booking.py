"""
Booking: a confirmed booking owned by the travel product.
Counted per `user_id` for `bookings_made` conditions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, utcnow


class Booking(Base, IdMixin):
    __tablename__ = "bookings"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    business_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
