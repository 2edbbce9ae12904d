"""
Passport progression formulas.

Pure calculation functions for the passport level curve. No config or
database access; callers pass `xp_per_level` from
`gamification.xp_per_level`.

Usage
-----
    from passport.modules.shared.formulas import calculate_level

    level = calculate_level(2_450)  # -> 3
"""

from __future__ import annotations

DEFAULT_XP_PER_LEVEL = 1000


def calculate_level(xp: int, xp_per_level: int = DEFAULT_XP_PER_LEVEL) -> int:
    """
    Level reached with `xp` total experience.

    Linear curve: every `xp_per_level` XP is one level, starting at level 1.

    Example:
        >>> calculate_level(0)
        1
        >>> calculate_level(999)
        1
        >>> calculate_level(1000)
        2
    """
    if xp_per_level <= 0:
        raise ValueError("xp_per_level must be positive")
    if xp <= 0:
        return 1
    return xp // xp_per_level + 1


def next_level_threshold(level: int, xp_per_level: int = DEFAULT_XP_PER_LEVEL) -> int:
    """
    Total XP needed to leave `level`.

    Example:
        >>> next_level_threshold(3)
        3000
    """
    return max(1, level) * xp_per_level


def xp_to_next_level(xp: int, xp_per_level: int = DEFAULT_XP_PER_LEVEL) -> int:
    return next_level_threshold(calculate_level(xp, xp_per_level), xp_per_level) - max(0, xp)
