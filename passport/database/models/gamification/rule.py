"""
GamificationRule: trigger-scoped, condition-gated reward definition.
Schema only.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from passport.core.database.base import Base, IdMixin, JSONType, TimestampMixin


class GamificationRule(Base, IdMixin, TimestampMixin):
    """
    Administrator-managed rule.

    Rules are soft-disabled through `is_active` and never hard-deleted while
    grants reference them.
    """

    __tablename__ = "gamification_rules"
    __table_args__ = (
        Index(
            "ix_gamification_rules_trigger_active_priority",
            "trigger_event",
            "is_active",
            "priority",
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    trigger_event: Mapped[str] = mapped_column(String(100), nullable=False)

    condition: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    badge_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("badges.id", ondelete="SET NULL"),
        nullable=True,
    )
    achievement_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("achievements.id", ondelete="SET NULL"),
        nullable=True,
    )

    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    coins_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # "metadata" is reserved on declarative classes
    rule_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
