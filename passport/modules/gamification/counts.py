"""
Count Aggregator

Answers `count` conditions ("at least 5 trips created") by counting the
subject's rows in the product's activity tables.

Fields
------
    trips_created   -> trips
    bookings_made   -> bookings
    reviews_posted  -> reviews
    check_ins       -> city_checkins

Unknown fields, unknown operators and non-integer thresholds are ineligible.
Storage failures propagate so the caller's unit of work rolls back.
"""

from __future__ import annotations

import operator
from typing import TYPE_CHECKING, Callable, Dict, Optional

from passport.core.logging.logger import get_logger
from passport.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from .conditions import CountCondition
    from .store import GamificationUnitOfWork

KNOWN_COUNT_FIELDS: Dict[str, str] = {
    "trips_created": "trips",
    "bookings_made": "bookings",
    "reviews_posted": "reviews",
    "check_ins": "city_checkins",
}

COMPARATORS: Dict[str, Callable[[int, int], bool]] = {
    "gte": operator.ge,
    "lte": operator.le,
    "equals": operator.eq,
    "gt": operator.gt,
    "lt": operator.lt,
}


class CountAggregator:
    def __init__(self, logger: Optional[Logger] = None) -> None:
        self.log = logger or get_logger(__name__)

    async def resolve_count(
        self, field: str, subject_id: str, uow: GamificationUnitOfWork
    ) -> int:
        """
        Count the subject's rows for `field`.

        Raises:
            ValidationError: If `field` is not a known count field
        """
        if field not in KNOWN_COUNT_FIELDS:
            raise ValidationError("field", f"unknown count field '{field}'")
        return await uow.count_activity(field, subject_id)

    async def check(
        self,
        condition: CountCondition,
        subject_id: str,
        uow: GamificationUnitOfWork,
    ) -> bool:
        """Evaluate a count condition; False for anything malformed."""
        if condition.field not in KNOWN_COUNT_FIELDS:
            self.log.debug(
                "Count condition on unknown field",
                extra={"field": condition.field, "subject_id": subject_id},
            )
            return False

        compare = COMPARATORS.get(condition.operator)
        if compare is None:
            self.log.debug(
                "Count condition with unknown operator",
                extra={"operator": condition.operator, "subject_id": subject_id},
            )
            return False

        threshold = condition.value
        if not isinstance(threshold, int) or isinstance(threshold, bool):
            return False

        actual = await self.resolve_count(condition.field, subject_id, uow)
        return compare(actual, threshold)
