"""
Base Repository Pattern

Purpose
-------
Generic repository abstraction over SQLAlchemy 2.0 async sessions. The SQL
gamification store composes one repository per table and never builds raw
session calls itself.

Design Notes
------------
This base repository provides:
- Lookup by primary key or arbitrary conditions, optionally FOR UPDATE
- Ordered, limited multi-row queries
- Existence / counting utilities
- `add_unique`: insert inside a SAVEPOINT and report a uniqueness conflict
  as `False` instead of poisoning the enclosing transaction

What this class does NOT do:
- Open or commit transactions (DatabaseService.get_transaction does)
- Contain gamification logic

Usage
-----
    class UserBadgeRepository(BaseRepository[UserBadge]):
        async def has_badge(self, session, subject_id, badge_id) -> bool:
            return await self.exists(
                session,
                UserBadge.subject_id == subject_id,
                UserBadge.badge_id == badge_id,
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Generic base repository for type-safe database operations.

    Type Parameters:
        T: The SQLAlchemy model class this repository manages
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    async def get(
        self,
        session: AsyncSession,
        id_value: Any,
        for_update: bool = False,
    ) -> Optional[T]:
        """Get a single record by primary key."""
        instance = await session.get(
            self.model_class, id_value, with_for_update=for_update
        )

        self.log.debug(
            f"Repository.get: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "id": id_value,
                "found": instance is not None,
                "locked": for_update,
            },
        )
        return instance

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        """
        Find a single record matching conditions.

        Args:
            session: Database session
            *conditions: SQLAlchemy filter conditions
            for_update: If True, use SELECT FOR UPDATE

        Returns:
            Model instance or None if not found
        """
        stmt = select(self.model_class).where(*conditions)
        if for_update:
            stmt = stmt.with_for_update()

        result = await session.execute(stmt)
        instance = result.scalar_one_or_none()

        self.log.debug(
            f"Repository.find_one_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found": instance is not None,
                "locked": for_update,
            },
        )
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        """
        Find multiple records matching conditions.

        Args:
            session: Database session
            *conditions: SQLAlchemy filter conditions
            order_by: Optional ordering clauses, applied in sequence
            limit: Optional maximum number of results
        """
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        instances = list(result.scalars().all())

        self.log.debug(
            f"Repository.find_many_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found_count": len(instances),
                "limit": limit,
            },
        )
        return instances

    async def exists(
        self, session: AsyncSession, *conditions: ColumnElement[bool]
    ) -> bool:
        count = await self.count(session, *conditions)
        return count > 0

    async def count(
        self, session: AsyncSession, *conditions: ColumnElement[bool]
    ) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        result = await session.execute(stmt)
        count = int(result.scalar_one())

        self.log.debug(
            f"Repository.count: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__, "count": count},
        )
        return count

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        self.log.debug(
            f"Repository.add: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__},
        )
        return instance

    async def add_unique(self, session: AsyncSession, instance: T) -> bool:
        """
        Insert `instance` inside a SAVEPOINT.

        Returns:
            True if the row was written, False if a unique constraint
            rejected it. The outer transaction stays usable either way.
        """
        try:
            async with session.begin_nested():
                session.add(instance)
        except IntegrityError:
            self.log.debug(
                f"Repository.add_unique: {self.model_class.__name__} conflict",
                extra={"model": self.model_class.__name__, "inserted": False},
            )
            return False

        self.log.debug(
            f"Repository.add_unique: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__, "inserted": True},
        )
        return True

    async def flush(self, session: AsyncSession) -> None:
        await session.flush()
        self.log.debug(
            f"Repository.flush: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__},
        )

    async def refresh(self, session: AsyncSession, instance: T) -> T:
        await session.refresh(instance)
        return instance
