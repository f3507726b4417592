"""
Base repository with common CRUD operations.

Repositories are bound to the session of one unit of work; they flush but
never commit, so everything a service does inside one transaction lands or
rolls back together.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sprintsync.infrastructure.database import Base
from sprintsync.infrastructure.exceptions import InvalidInputError, NotFoundError

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Generic async repository for SQLAlchemy models."""

    model: Type[T]

    def __init__(self, session: AsyncSession):
        self.session = session

    def _apply_filters(self, stmt, filters: dict[str, Any] | None):
        if filters:
            for key, value in filters.items():
                if value is None or not hasattr(self.model, key):
                    continue
                col = getattr(self.model, key)
                if isinstance(value, (list, tuple, set, frozenset)):
                    stmt = stmt.where(col.in_(list(value)))
                else:
                    stmt = stmt.where(col == value)
        return stmt

    def _apply_strict_filters(self, stmt, filters: dict[str, Any]):
        """Filters for bulk writes: every key must be a column and None means IS NULL."""
        if not filters:
            raise InvalidInputError("Bulk operations require at least one filter")
        columns = self.model.__mapper__.columns
        for key, value in filters.items():
            if key not in columns:
                raise InvalidInputError(f"Unknown filter field: {key}")
            col = getattr(self.model, key)
            if value is None:
                stmt = stmt.where(col.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(col.in_(list(value)))
            else:
                stmt = stmt.where(col == value)
        return stmt

    def _apply_order(self, stmt, order_by: str | None):
        if not order_by:
            return stmt
        for part in order_by.split(","):
            part = part.strip()
            col_name = part.lstrip("-")
            if not col_name or not hasattr(self.model, col_name):
                continue
            col = getattr(self.model, col_name)
            stmt = stmt.order_by(col.desc() if part.startswith("-") else col.asc())
        return stmt

    async def get(self, id: Any) -> Optional[T]:
        """Get a single record by primary key."""
        return await self.session.get(self.model, id)

    async def get_or_raise(self, id: Any, message: str) -> T:
        instance = await self.get(id)
        if instance is None:
            raise NotFoundError(message)
        return instance

    async def list(
        self,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Sequence[T]:
        """List records with optional filters, ordering, and pagination."""
        stmt = self._apply_order(self._apply_filters(select(self.model), filters), order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count(self, filters: dict[str, Any] | None = None) -> int:
        """Count records matching filters."""
        stmt = self._apply_filters(select(func.count()).select_from(self.model), filters)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def save(self, instance: T) -> T:
        """Add (or re-add) a record and flush it."""
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def delete(self, instance: T) -> None:
        await self.session.delete(instance)
        await self.session.flush()

    async def update_many(self, filters: dict[str, Any], values: dict[str, Any]) -> int:
        """Bulk UPDATE matching rows. Returns the number of rows changed."""
        stmt = self._apply_strict_filters(update(self.model), filters).values(**values)
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def delete_many(self, filters: dict[str, Any]) -> int:
        """Bulk DELETE matching rows. Returns the number of rows removed."""
        stmt = self._apply_strict_filters(delete(self.model), filters)
        result = await self.session.execute(stmt)
        return result.rowcount or 0
