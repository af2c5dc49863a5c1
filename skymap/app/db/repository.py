"""
Generic persistence accessor.

Thin wrapper over an AsyncSession providing CRUD, filtered selects and a
conditional (compare-and-swap) update. Writes are flushed, never committed;
the caller owns the transaction via unit_of_work.
"""

from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

ModelT = TypeVar("ModelT")


class Repository(Generic[ModelT]):
    """
    Persisted entity accessor for one model class.

    Usage:
        deliveries = Repository(db, Delivery)
        delivery = await deliveries.get(delivery_id)
        won = await deliveries.conditional_update(
            delivery_id,
            expected={"status": DeliveryStatus.CREATED},
            values={"status": DeliveryStatus.ASSIGNED},
        )
    """

    def __init__(self, db: AsyncSession, model: Type[ModelT]):
        self.db = db
        self.model = model

    def _criteria(self, filters: Optional[Dict[str, Any]]) -> list:
        criteria = []
        for field, value in (filters or {}).items():
            column = getattr(self.model, field)
            if value is None:
                criteria.append(column.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                criteria.append(column.in_(list(value)))
            else:
                criteria.append(column == value)
        return criteria

    async def get(self, entity_id: Any) -> Optional[ModelT]:
        return await self.db.get(self.model, entity_id)

    async def insert(self, **values) -> ModelT:
        entity = self.model(**values)
        self.db.add(entity)
        await self.db.flush()
        await self.db.refresh(entity)
        return entity

    async def update(self, entity: ModelT, **values) -> ModelT:
        for field, value in values.items():
            setattr(entity, field, value)
        await self.db.flush()
        await self.db.refresh(entity)
        return entity

    async def delete(self, entity_id: Any) -> bool:
        """Delete by primary key. Returns True if a row was removed."""
        result = await self.db.execute(
            delete(self.model)
            .where(self.model.id == entity_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def select(
        self,
        filters: Optional[Dict[str, Any]] = None,
        where: Sequence[Any] = (),
        order_by: Sequence[Any] = (),
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[ModelT]:
        """
        Select rows matching equality filters plus raw SQLAlchemy criteria.

        Args:
            filters: Column name -> value. None matches IS NULL, a collection matches IN.
            where: Extra SQLAlchemy boolean expressions (ranges, comparisons)
            order_by: Ordering expressions
            offset: Rows to skip
            limit: Maximum rows to return

        Returns:
            List of model instances
        """
        query = select(self.model).where(*self._criteria(filters), *where)
        if order_by:
            query = query.order_by(*order_by)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def conditional_update(
        self,
        entity_id: Any,
        expected: Dict[str, Any],
        values: Dict[str, Any],
    ) -> bool:
        """
        Atomically update a row only if it still matches `expected`.

        Issues a single ``UPDATE ... WHERE id = :id AND <expected>``.
        Any identity-mapped instance is refreshed when the write lands.

        Returns:
            True if exactly one row was updated, False if the expectation no longer holds
        """
        result = await self.db.execute(
            update(self.model)
            .where(self.model.id == entity_id, *self._criteria(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        entity = await self.db.get(self.model, entity_id)
        if entity is not None:
            await self.db.refresh(entity)
        return True
