"""
Condition Evaluator

Purpose
-------
Turn the JSON `condition` stored on a rule or quest step into a closed set of
typed condition objects, and decide whether an event context satisfies them.

Responsibilities
----------------
- Parse raw mappings into `Condition` variants (`parse_condition`)
- Evaluate context-only conditions synchronously (`evaluate`)
- Route `count` conditions to an async count source (`ConditionResolver`)

Design Notes
------------
- Fail closed: anything malformed, unknown or unsupported evaluates to False
  and is never raised.
- `{}` is satisfied only for quest steps (`empty_is_satisfied=True`).
  A missing step condition (`None`) parses to the same `EmptyCondition`.
- `CountCondition` is False in the synchronous evaluator; only
  `ConditionResolver.is_satisfied` can answer it.

Usage
-----
    condition = parse_condition({"type": "location", "city_name": "Brașov"})
    evaluate(condition, {"city_name": "brașov"})  # -> True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional, Union

from passport.core.logging.logger import get_logger

if TYPE_CHECKING:
    from .counts import CountAggregator

logger = get_logger(__name__)

EQUALS = "equals"


# ============================================================================
# CONDITION VARIANTS
# ============================================================================


@dataclass(frozen=True)
class AlwaysCondition:
    pass


@dataclass(frozen=True)
class LocationCondition:
    city_name: Optional[str] = None
    operator: str = EQUALS


@dataclass(frozen=True)
class CategoryCondition:
    business_category: Optional[str] = None
    operator: str = EQUALS


@dataclass(frozen=True)
class CountCondition:
    """
    Historical count comparison.

    `value` is kept as stored; a non-integer makes the condition ineligible
    at evaluation time rather than at parse time.
    """

    field: Optional[str] = None
    operator: str = "gte"
    value: Any = 0


@dataclass(frozen=True)
class EmptyCondition:
    """`{}` or a missing quest step condition."""


@dataclass(frozen=True)
class UnknownCondition:
    """Missing or unrecognized `type`; never satisfied."""

    type_name: Optional[str] = None


Condition = Union[
    AlwaysCondition,
    LocationCondition,
    CategoryCondition,
    CountCondition,
    EmptyCondition,
    UnknownCondition,
]


# ============================================================================
# PARSING
# ============================================================================


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def parse_condition(raw: Optional[Mapping[str, Any]]) -> Condition:
    """
    Parse a stored condition.

    Never raises. Non-mapping input and unknown `type` values become
    `UnknownCondition`.
    """
    if raw is None:
        return EmptyCondition()
    if not isinstance(raw, Mapping):
        return UnknownCondition(type_name=type(raw).__name__)
    if not raw:
        return EmptyCondition()

    kind = raw.get("type")
    operator = raw.get("operator")

    if kind == "always":
        return AlwaysCondition()
    if kind == "location":
        return LocationCondition(
            city_name=_text(raw.get("city_name")),
            operator=operator if isinstance(operator, str) else EQUALS,
        )
    if kind == "category":
        return CategoryCondition(
            business_category=_text(raw.get("business_category")),
            operator=operator if isinstance(operator, str) else EQUALS,
        )
    if kind == "count":
        return CountCondition(
            field=_text(raw.get("field")),
            operator=operator if isinstance(operator, str) else "gte",
            value=raw.get("value", 0),
        )

    return UnknownCondition(type_name=kind if isinstance(kind, str) else None)


# ============================================================================
# SYNCHRONOUS EVALUATION
# ============================================================================


def _equals_ignoring_case(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left.lower() == right.lower()


def _context_category(context: Mapping[str, Any]) -> Optional[str]:
    for key in ("business_type", "category"):
        value = context.get(key)
        if value is not None:
            return _text(value)
    return None


def evaluate(
    condition: Condition,
    context: Optional[Mapping[str, Any]],
    *,
    empty_is_satisfied: bool = False,
) -> bool:
    """
    Evaluate a parsed condition against event context.

    Args:
        condition: Parsed condition
        context: Event metadata (city_name, business_type, category, ...)
        empty_is_satisfied: True when evaluating a quest step

    Returns:
        True when satisfied. Count conditions always return False here.
    """
    context = context or {}

    if isinstance(condition, AlwaysCondition):
        return True

    if isinstance(condition, LocationCondition):
        if condition.operator != EQUALS:
            return False
        return _equals_ignoring_case(_text(context.get("city_name")), condition.city_name)

    if isinstance(condition, CategoryCondition):
        if condition.operator != EQUALS:
            return False
        return _equals_ignoring_case(_context_category(context), condition.business_category)

    if isinstance(condition, EmptyCondition):
        return empty_is_satisfied

    if isinstance(condition, (CountCondition, UnknownCondition)):
        return False

    raise TypeError(f"Unhandled condition variant: {type(condition).__name__}")


# ============================================================================
# ASYNC RESOLUTION
# ============================================================================


class ConditionResolver:
    """
    Evaluate any condition, including `count`, for one subject.

    Shared by the rule matcher and the quest state machine so both route
    count conditions through the same aggregator.
    """

    def __init__(self, counts: CountAggregator) -> None:
        self._counts = counts

    async def is_satisfied(
        self,
        raw: Optional[Mapping[str, Any]],
        subject_id: str,
        context: Optional[Mapping[str, Any]],
        uow: Any,
        *,
        empty_is_satisfied: bool = False,
    ) -> bool:
        condition = parse_condition(raw)

        if isinstance(condition, CountCondition):
            return await self._counts.check(condition, subject_id, uow)

        if isinstance(condition, UnknownCondition):
            logger.debug(
                "Unknown condition type, treating as ineligible",
                extra={"condition_type": condition.type_name, "subject_id": subject_id},
            )

        return evaluate(condition, context, empty_is_satisfied=empty_is_satisfied)
