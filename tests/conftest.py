"""
Pytest Configuration and Fixtures

Fixed clock, an in-memory item store with failure injection and a wired
GoalLifecycleManager for one user with one dream.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from dreamgoals.exceptions import PersistenceFailed
from dreamgoals.goal_lifecycle_service import GoalLifecycleManager
from dreamgoals.infrastructure.item_store import InMemoryItemStore
from dreamgoals.schemas import Dream, OperationResult

USER_ID = "user-1"
DREAM_ID = "dream-1"

# Wednesday of ISO week 2025-W43
START = datetime(2025, 10, 22, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock the tests move forward explicitly"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, weeks: int = 0, days: int = 0) -> None:
        self.now = self.now + timedelta(weeks=weeks, days=days)


class FlakyItemStore(InMemoryItemStore):
    """
    InMemoryItemStore whose write methods can be told to fail, or to yield
    to the event loop before writing like a networked store would.
    """

    def __init__(self):
        super().__init__()
        self.fail_on = set()
        self.yield_writes = False

    async def _pause(self):
        if self.yield_writes:
            await asyncio.sleep(0)

    def _injected(self, operation: str) -> OperationResult:
        self.calls.append(operation)
        return OperationResult.fail(PersistenceFailed(operation, "injected failure"))

    async def save_dreams(self, user_id, dreams, templates):
        await self._pause()
        if "save_dreams" in self.fail_on:
            return self._injected("save_dreams")
        return await super().save_dreams(user_id, dreams, templates)

    async def save_current_week(self, user_id, week_id, goals):
        await self._pause()
        if "save_current_week" in self.fail_on:
            return self._injected("save_current_week")
        return await super().save_current_week(user_id, week_id, goals)

    async def add_scoring_entry(self, user_id, year, entry):
        await self._pause()
        if "add_scoring_entry" in self.fail_on:
            return self._injected("add_scoring_entry")
        return await super().add_scoring_entry(user_id, year, entry)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return FlakyItemStore()


@pytest.fixture
def dream():
    return Dream(id=DREAM_ID, title="Run a marathon", category="Health")


@pytest_asyncio.fixture
async def manager(store, clock, dream):
    """Manager for USER_ID, loaded with one dream and no goals"""
    await store.save_dreams(USER_ID, [dream], [])
    mgr = GoalLifecycleManager(USER_ID, store, clock=clock)
    result = await mgr.load()
    assert result.success, result.error
    store.calls.clear()
    return mgr


@pytest.fixture
def events(manager):
    """Every DomainEvent published by the manager, in order"""
    from dreamgoals.events import DomainEventType

    seen = []
    for event_type in DomainEventType:
        manager.state_store.bus.subscribe(event_type, seen.append)
    return seen
