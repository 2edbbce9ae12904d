"""
Passport Shared Module

Domain-level foundations for the gamification module:
- BaseService: logging, config and event helpers for services
- BaseRepository: typed SQLAlchemy data access
- Domain exceptions
- Progression formulas

Usage
-----
    from passport.modules.shared import BaseService, NotFoundError, calculate_level
"""

from passport.core.exceptions import get_error_severity, is_transient_error, should_alert

from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    GrantConflictError,
    InvalidOperationError,
    NotFoundError,
    PassportDomainException,
    QuestStateConflictError,
    ValidationError,
)
from .formulas import calculate_level, next_level_threshold, xp_to_next_level

__all__ = [
    "BaseRepository",
    "BaseService",
    "GrantConflictError",
    "InvalidOperationError",
    "NotFoundError",
    "PassportDomainException",
    "QuestStateConflictError",
    "ValidationError",
    "get_error_severity",
    "is_transient_error",
    "should_alert",
    "calculate_level",
    "next_level_threshold",
    "xp_to_next_level",
]
