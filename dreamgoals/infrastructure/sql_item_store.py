"""
SQL item store (SQLAlchemy async + UnitOfWork)

Each store call runs in its own transaction. save_dreams replaces the
dream and template collections inside one transaction, so a failure leaves
both untouched.
"""
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dreamgoals.exceptions import PersistenceFailed
from dreamgoals.infrastructure.uow import UnitOfWork
from dreamgoals.logging_config import get_logger
from dreamgoals.schemas import (
    CurrentWeek,
    Dream,
    ItemType,
    OperationResult,
    ScoringEntry,
    WeeklyGoalInstance,
    WeeklyGoalTemplate,
)

logger = get_logger(__name__)


class SqlItemStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def _failed(self, operation: str, error: SQLAlchemyError) -> OperationResult:
        logger.error("item_store_sql_error", operation=operation, error=str(error))
        return OperationResult.fail(PersistenceFailed(operation, type(error).__name__))

    async def save_dreams(self, user_id, dreams, templates) -> OperationResult:
        try:
            async with UnitOfWork(self._session_factory) as uow:
                dream_count = await uow.items.replace(
                    uow.session, user_id, ItemType.DREAM.value, [d.to_wire() for d in dreams]
                )
                template_count = await uow.items.replace(
                    uow.session,
                    user_id,
                    ItemType.WEEKLY_GOAL_TEMPLATE.value,
                    [t.to_wire() for t in templates],
                )
        except SQLAlchemyError as e:
            return self._failed("save_dreams", e)

        logger.debug("dreams_saved", user_id=user_id, dreams=dream_count, templates=template_count)
        return OperationResult.ok({"id": f"{user_id}_dreams"})

    async def load_dreams(self, user_id) -> OperationResult:
        try:
            async with UnitOfWork(self._session_factory) as uow:
                dreams = await uow.items.list(uow.session, user_id, ItemType.DREAM.value)
                templates = await uow.items.list(uow.session, user_id, ItemType.WEEKLY_GOAL_TEMPLATE.value)
        except SQLAlchemyError as e:
            return self._failed("load_dreams", e)

        return OperationResult.ok({
            "dreams": tuple(Dream.model_validate(row.payload) for row in dreams),
            "templates": tuple(WeeklyGoalTemplate.model_validate(row.payload) for row in templates),
        })

    async def get_current_week(self, user_id) -> OperationResult:
        try:
            async with UnitOfWork(self._session_factory) as uow:
                week_id = await uow.items.latest_week_id(uow.session, user_id, ItemType.WEEKLY_GOAL.value)
                rows = []
                if week_id is not None:
                    rows = await uow.items.list(
                        uow.session, user_id, ItemType.WEEKLY_GOAL.value, week_id=week_id
                    )
        except SQLAlchemyError as e:
            return self._failed("get_current_week", e)

        if week_id is None:
            return OperationResult.ok(None)
        return OperationResult.ok(CurrentWeek(
            week_id=week_id,
            goals=tuple(WeeklyGoalInstance.model_validate(row.payload) for row in rows),
        ))

    async def save_current_week(self, user_id, week_id, goals) -> OperationResult:
        """Replaces only this week's rows; earlier weeks stay as history"""
        try:
            async with UnitOfWork(self._session_factory) as uow:
                await uow.items.replace(
                    uow.session,
                    user_id,
                    ItemType.WEEKLY_GOAL.value,
                    [g.to_wire() for g in goals],
                    week_id=week_id,
                )
        except SQLAlchemyError as e:
            return self._failed("save_current_week", e)
        return OperationResult.ok({"id": f"{user_id}_{week_id}"})

    async def add_scoring_entry(self, user_id, year, entry: ScoringEntry) -> OperationResult:
        try:
            async with UnitOfWork(self._session_factory) as uow:
                await uow.items.add(
                    uow.session, user_id, ItemType.SCORING_ENTRY.value, entry.to_wire(), year=year
                )
                total = await uow.items.total_points(uow.session, user_id, year)
        except SQLAlchemyError as e:
            return self._failed("add_scoring_entry", e)
        return OperationResult.ok({
            "id": f"{user_id}_{year}_scoring",
            "entryId": entry.id,
            "totalScore": total,
        })

    async def get_scoring(self, user_id, year) -> OperationResult:
        try:
            async with UnitOfWork(self._session_factory) as uow:
                rows = await uow.items.list(uow.session, user_id, ItemType.SCORING_ENTRY.value, year=year)
        except SQLAlchemyError as e:
            return self._failed("get_scoring", e)

        entries = tuple(ScoringEntry.model_validate(row.payload) for row in rows)
        return OperationResult.ok({
            "entries": entries,
            "totalScore": sum(e.points for e in entries),
        })
