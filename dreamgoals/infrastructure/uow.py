"""
Unit of Work Pattern - Infrastructure Layer
===========================================
"""
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dreamgoals.models import Item


class UnitOfWork:
    """
    Thin Unit of Work: one session, one transaction.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            await uow.items.replace(uow.session, user_id, "dream", payloads)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self.items = ItemRepository()

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit, or roll back on error, then close the session"""
        try:
            if exc_type is None:
                if self._session:
                    await self._session.commit()
            else:
                if self._session:
                    await self._session.rollback()
        finally:
            if self._session:
                await self._session.close()
                self._session = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork() as uow:' pattern."
            )
        return self._session


class ItemRepository:
    """Item rows - CRUD only"""

    async def list(
        self,
        session,
        user_id: str,
        item_type: str,
        week_id: Optional[str] = None,
        year: Optional[int] = None,
    ) -> List[Item]:
        stmt = select(Item).where(Item.user_id == user_id, Item.type == item_type)
        if week_id is not None:
            stmt = stmt.where(Item.week_id == week_id)
        if year is not None:
            stmt = stmt.where(Item.year == year)
        result = await session.execute(stmt.order_by(Item.position, Item.pk))
        return list(result.scalars().all())

    async def replace(
        self,
        session,
        user_id: str,
        item_type: str,
        payloads: Iterable[dict],
        week_id: Optional[str] = None,
    ) -> int:
        """Delete the collection's rows and insert the new ones in order"""
        stmt = delete(Item).where(Item.user_id == user_id, Item.type == item_type)
        if week_id is not None:
            stmt = stmt.where(Item.week_id == week_id)
        await session.execute(stmt)

        count = 0
        for position, payload in enumerate(payloads):
            session.add(Item(
                item_id=payload["id"],
                user_id=user_id,
                type=item_type,
                week_id=week_id,
                position=position,
                payload=payload,
            ))
            count += 1
        await session.flush()
        return count

    async def add(self, session, user_id: str, item_type: str, payload: dict, year: Optional[int] = None) -> Item:
        item = Item(item_id=payload["id"], user_id=user_id, type=item_type, year=year, payload=payload)
        session.add(item)
        await session.flush()
        return item

    async def latest_week_id(self, session, user_id: str, item_type: str) -> Optional[str]:
        stmt = select(func.max(Item.week_id)).where(Item.user_id == user_id, Item.type == item_type)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def total_points(self, session, user_id: str, year: int) -> int:
        result = await session.execute(
            select(Item.payload).where(
                Item.user_id == user_id, Item.type == "scoring_entry", Item.year == year
            )
        )
        return sum(int(payload.get("points", 0)) for payload in result.scalars().all())
