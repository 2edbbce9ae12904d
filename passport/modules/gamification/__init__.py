"""
Gamification Module

Domain: rules, badges, achievements and quests for the travel passport

Services:
- GamificationEngine: Activity event entry point (rules, legacy badges, quests)
- RuleMatcher: Trigger-scoped rule evaluation and grants
- LegacyBadgeEvaluator: Badge criteria fallback when no rules exist
- RewardGranter: Idempotent XP/coins, badge and achievement grants
- QuestProgressMachine / QuestService: Quest advancement and start
- PassportService: Passport read model and manual XP
- GamificationListener: EventBus bridge for `activity.<trigger>` events
- SqlGamificationStore: PostgreSQL-backed store (SQLAlchemy async)
"""

from .conditions import (
    AlwaysCondition,
    CategoryCondition,
    Condition,
    ConditionResolver,
    CountCondition,
    EmptyCondition,
    LocationCondition,
    UnknownCondition,
    evaluate,
    parse_condition,
)
from .counts import KNOWN_COUNT_FIELDS, CountAggregator
from .engine import GamificationEngine
from .legacy import LegacyBadgeEvaluator
from .listener import GamificationListener
from .passport_service import PassportService
from .quests import QuestAdvanceResult, QuestProgressMachine, QuestService
from .rewards import RewardGranter
from .rules import NO_RULES, RuleMatcher, RuleMatchResult
from .serializer import SubjectSerializer
from .sql_store import SqlGamificationStore, SqlGamificationUnitOfWork
from .store import GamificationStore, GamificationUnitOfWork

__all__ = [
    "AlwaysCondition",
    "CategoryCondition",
    "Condition",
    "ConditionResolver",
    "CountCondition",
    "EmptyCondition",
    "LocationCondition",
    "UnknownCondition",
    "evaluate",
    "parse_condition",
    "KNOWN_COUNT_FIELDS",
    "CountAggregator",
    "GamificationEngine",
    "LegacyBadgeEvaluator",
    "GamificationListener",
    "PassportService",
    "QuestAdvanceResult",
    "QuestProgressMachine",
    "QuestService",
    "RewardGranter",
    "NO_RULES",
    "RuleMatcher",
    "RuleMatchResult",
    "SubjectSerializer",
    "SqlGamificationStore",
    "SqlGamificationUnitOfWork",
    "GamificationStore",
    "GamificationUnitOfWork",
]
