"""
SQL ITEM STORE TESTS

Runs the SQLAlchemy store against a throwaway SQLite file.
"""
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from dreamgoals.database import init_models, make_engine, make_session_factory
from dreamgoals.goal_lifecycle_service import GoalLifecycleManager
from dreamgoals.infrastructure.sql_item_store import SqlItemStore
from dreamgoals.schemas import Dream, Goal, WeeklyGoalInstance, WeeklyGoalTemplate
from dreamgoals.scoring_engine import create_scoring_entry

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]

NOW = datetime(2025, 10, 22, 10, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path}/items.db")
    await init_models(engine)
    yield SqlItemStore(make_session_factory(engine))
    await engine.dispose()


def week_goal(goal_id, week_id, **fields):
    return WeeklyGoalInstance(id=f"{goal_id}_{week_id}", title="Run", week_id=week_id, **fields)


class TestDreams:

    async def test_empty_user(self, sql_store):
        result = await sql_store.load_dreams("nobody")
        assert result.data == {"dreams": (), "templates": ()}

    async def test_save_replaces_collections(self, sql_store):
        """
        SCENARIO: dreams saved twice, second time with fewer items

        EXPECTED: load returns exactly the second collections, in order
        """
        goal = Goal(id="g1", title="Run", target_weeks=12, week_log={"2025-W43": True})
        first = [Dream(id="d1", title="Marathon", goals=(goal,)), Dream(id="d2", title="Spanish")]
        template = WeeklyGoalTemplate(id="template_g1", goal_id="g1", title="Run")
        assert (await sql_store.save_dreams("u1", first, [template])).success

        second = [first[1], first[0]]
        assert (await sql_store.save_dreams("u1", second, [])).success

        loaded = await sql_store.load_dreams("u1")
        assert [d.id for d in loaded.data["dreams"]] == ["d2", "d1"]
        assert loaded.data["dreams"][1].goals[0] == goal
        assert loaded.data["templates"] == ()

    async def test_users_are_isolated(self, sql_store):
        await sql_store.save_dreams("u1", [Dream(id="d1", title="Marathon")], [])
        await sql_store.save_dreams("u2", [Dream(id="d1", title="Other")], [])
        loaded = await sql_store.load_dreams("u1")
        assert loaded.data["dreams"][0].title == "Marathon"


class TestCurrentWeek:

    async def test_no_week_saved(self, sql_store):
        result = await sql_store.get_current_week("u1")
        assert result.success and result.data is None

    async def test_latest_week_is_current(self, sql_store):
        await sql_store.save_current_week("u1", "2025-W43", [week_goal("t1", "2025-W43", completed=True)])
        await sql_store.save_current_week("u1", "2025-W44", [week_goal("t1", "2025-W44")])

        result = await sql_store.get_current_week("u1")

        assert result.data.week_id == "2025-W44"
        assert [g.id for g in result.data.goals] == ["t1_2025-W44"]

    async def test_ad_hoc_id_reused_in_later_week(self, sql_store):
        """
        SCENARIO: an ad-hoc goal keeps its id from one week to the next

        EXPECTED: both weeks are stored, the later one is current
        """
        first = WeeklyGoalInstance(id="adhoc-1", title="Stretch", week_id="2025-W43", completed=True)
        second = WeeklyGoalInstance(id="adhoc-1", title="Stretch", week_id="2025-W44")
        assert (await sql_store.save_current_week("u1", "2025-W43", [first])).success

        result = await sql_store.save_current_week("u1", "2025-W44", [second])

        assert result.success
        current = await sql_store.get_current_week("u1")
        assert current.data.goals == (second,)

    async def test_save_replaces_only_that_week(self, sql_store):
        await sql_store.save_current_week("u1", "2025-W43", [week_goal("t1", "2025-W43")])
        await sql_store.save_current_week("u1", "2025-W44", [week_goal("t1", "2025-W44")])
        await sql_store.save_current_week("u1", "2025-W44", [])

        result = await sql_store.get_current_week("u1")

        assert result.data.week_id == "2025-W43"


class TestScoring:

    async def test_totals_per_year(self, sql_store):
        await sql_store.add_scoring_entry("u1", 2025, create_scoring_entry("week", 3, "x", now=NOW))
        added = await sql_store.add_scoring_entry("u1", 2025, create_scoring_entry("milestone", 15, "y", now=NOW))
        await sql_store.add_scoring_entry("u1", 2024, create_scoring_entry("dream", 10, "z", now=NOW))

        assert added.data["totalScore"] == 18
        scoring = await sql_store.get_scoring("u1", 2025)
        assert scoring.data["totalScore"] == 18
        assert [e.points for e in scoring.data["entries"]] == [3, 15]

    async def test_duplicate_entry_is_a_failed_result(self, sql_store):
        entry = create_scoring_entry("week", 3, "x", now=NOW)
        await sql_store.add_scoring_entry("u1", 2025, entry)

        result = await sql_store.add_scoring_entry("u1", 2025, entry)

        assert not result.success
        assert result.error.code == "PersistenceFailed"
        assert (await sql_store.get_scoring("u1", 2025)).data["totalScore"] == 3


class TestManagerOnSql:

    async def test_goal_roundtrip_through_manager(self, sql_store):
        """
        SCENARIO: goal added and toggled through the manager, then reloaded

        EXPECTED: a fresh manager sees the same goal, template, instance and score
        """
        clock = lambda: NOW  # noqa: E731
        await sql_store.save_dreams("u1", [Dream(id="d1", title="Marathon")], [])
        manager = GoalLifecycleManager("u1", sql_store, clock=clock)
        await manager.load()

        goal = (await manager.add_goal("d1", {"title": "Run", "targetWeeks": 4})).data
        toggled = await manager.toggle_weekly_goal(f"template_{goal.id}")
        assert toggled.success, toggled.error

        fresh = GoalLifecycleManager("u1", sql_store, clock=clock)
        await fresh.load()
        assert fresh.state.templates == manager.state.templates
        assert fresh.state.instances == manager.state.instances
        assert fresh.state.score == 3
        assert fresh.state.dreams[0].find_goal(goal.id).week_log == {"2025-W43": True}
