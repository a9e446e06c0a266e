from __future__ import annotations

from typing import Any, Iterable, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import Executable, select, update
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository:
    """
    Base class for repositories providing common helpers.

    Note:
      RLS enforcement is handled by Postgres using the `app.tenant_id` GUC.
      Ensure the session you're using has tenant context set via tenant_context.

      Write helpers only flush. Services commit once per use case so multi-row
      operations (consumption, reversals) stay atomic.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def execute(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute a SQLAlchemy statement."""
        return await self.session.execute(statement, params or {})

    async def scalars(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return scalars."""
        result = await self.execute(statement, params)
        return result.scalars()

    async def scalar_one_or_none(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return a single scalar or None."""
        result = await self.execute(statement, params)
        return result.scalar_one_or_none()

    async def commit(self) -> None:
        """Commit current transaction."""
        await self.session.commit()

    async def flush(self) -> None:
        """Flush pending changes so server defaults and generated ids are populated."""
        await self.session.flush()

    async def add_all(self, entities: Iterable[Any]) -> None:
        """Add multiple entities to session."""
        self.session.add_all(list(entities))
        await self.session.flush()

    async def add(self, entity: T) -> T:
        """Add a single entity to session and flush it."""
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def delete(self, entity: Any) -> None:
        await self.session.delete(entity)
        await self.session.flush()

    async def get_by_id(self, model: Type[T], entity_id: UUID, *, fresh: bool = False) -> Optional[T]:
        """Load one row by primary key; fresh=True overwrites any stale identity-map state."""
        stmt = select(model).where(model.id == entity_id)  # type: ignore[attr-defined]
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        return await self.scalar_one_or_none(stmt)

    async def update_values(self, model: Type[T], entity_id: UUID, values: dict[str, Any]) -> Optional[T]:
        """Apply a partial UPDATE and return the reloaded row."""
        if values:
            stmt = (
                update(model)
                .where(model.id == entity_id)  # type: ignore[attr-defined]
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            await self.execute(stmt)
        return await self.get_by_id(model, entity_id, fresh=True)
