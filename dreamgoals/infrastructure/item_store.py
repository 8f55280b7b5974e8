"""
Item Store - persistence boundary of the goal engine
====================================================
The engine never talks to a database directly. Every store call returns an
OperationResult; a failed call has success=False and never raises for
expected transport/storage problems.

Collections are written whole: save_dreams replaces the user's dreams and
templates together, save_current_week replaces the week's instance list.
"""
from typing import Dict, Iterable, List, Protocol, Tuple

from dreamgoals.logging_config import get_logger
from dreamgoals.schemas import (
    CurrentWeek,
    Dream,
    OperationResult,
    ScoringEntry,
    WeeklyGoalInstance,
    WeeklyGoalTemplate,
)

logger = get_logger(__name__)


class ItemStore(Protocol):
    async def save_dreams(
        self,
        user_id: str,
        dreams: Iterable[Dream],
        templates: Iterable[WeeklyGoalTemplate],
    ) -> OperationResult: ...

    async def load_dreams(self, user_id: str) -> OperationResult:
        """data: {"dreams": tuple[Dream], "templates": tuple[WeeklyGoalTemplate]}"""

    async def get_current_week(self, user_id: str) -> OperationResult:
        """data: CurrentWeek or None when nothing was saved yet"""

    async def save_current_week(
        self,
        user_id: str,
        week_id: str,
        goals: Iterable[WeeklyGoalInstance],
    ) -> OperationResult: ...

    async def add_scoring_entry(self, user_id: str, year: int, entry: ScoringEntry) -> OperationResult:
        """data: {"totalScore": int}"""

    async def get_scoring(self, user_id: str, year: int) -> OperationResult:
        """data: {"entries": tuple[ScoringEntry], "totalScore": int}"""


class InMemoryItemStore:
    """
    Dict-backed item store for local runs and tests.

    `calls` records the name of every method invoked, in order.
    """

    def __init__(self):
        self._dreams: Dict[str, Tuple[Tuple[Dream, ...], Tuple[WeeklyGoalTemplate, ...]]] = {}
        self._weeks: Dict[str, CurrentWeek] = {}
        self._scoring: Dict[Tuple[str, int], List[ScoringEntry]] = {}
        self.calls: List[str] = []

    async def save_dreams(self, user_id, dreams, templates) -> OperationResult:
        self.calls.append("save_dreams")
        self._dreams[user_id] = (tuple(dreams), tuple(templates))
        return OperationResult.ok({"id": f"{user_id}_dreams"})

    async def load_dreams(self, user_id) -> OperationResult:
        self.calls.append("load_dreams")
        dreams, templates = self._dreams.get(user_id, ((), ()))
        return OperationResult.ok({"dreams": dreams, "templates": templates})

    async def get_current_week(self, user_id) -> OperationResult:
        self.calls.append("get_current_week")
        return OperationResult.ok(self._weeks.get(user_id))

    async def save_current_week(self, user_id, week_id, goals) -> OperationResult:
        self.calls.append("save_current_week")
        self._weeks[user_id] = CurrentWeek(week_id=week_id, goals=tuple(goals))
        return OperationResult.ok({"id": f"{user_id}_{week_id}"})

    async def add_scoring_entry(self, user_id, year, entry) -> OperationResult:
        self.calls.append("add_scoring_entry")
        entries = self._scoring.setdefault((user_id, year), [])
        entries.append(entry)
        return OperationResult.ok({
            "id": f"{user_id}_{year}_scoring",
            "entryId": entry.id,
            "totalScore": sum(e.points for e in entries),
        })

    async def get_scoring(self, user_id, year) -> OperationResult:
        self.calls.append("get_scoring")
        entries = tuple(self._scoring.get((user_id, year), []))
        return OperationResult.ok({
            "entries": entries,
            "totalScore": sum(e.points for e in entries),
        })
