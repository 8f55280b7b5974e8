"""
STATE STORE TESTS

Pure reducer plus the two persistence orderings.
"""
import pytest

from dreamgoals.exceptions import PersistenceFailed
from dreamgoals.schemas import Dream, Goal, OperationResult, WeeklyGoalInstance, WeeklyGoalTemplate
from dreamgoals.state_store import (
    AddDream,
    AddTemplate,
    AppState,
    DeleteDream,
    DeleteTemplate,
    LoadState,
    LogWeekCompletion,
    ReplaceCurrentWeek,
    SetScore,
    StateStore,
    UpdateDream,
    UpdateTemplate,
    UpsertInstance,
    reduce,
)

DREAM = Dream(id="d1", title="Run a marathon", goals=(Goal(id="g1", title="Run"),))


async def ok():
    return OperationResult.ok()


async def failed():
    return OperationResult.fail(PersistenceFailed("save_dreams", "offline"))


class TestReducer:

    def test_reduce_returns_new_state(self):
        state = AppState(user_id="u1")
        new_state = reduce(state, AddDream(DREAM))
        assert state.dreams == ()
        assert new_state.dreams == (DREAM,)

    def test_dream_commands(self):
        state = reduce(AppState(user_id="u1"), LoadState(dreams=(DREAM,)))
        renamed = DREAM.model_copy(update={"title": "Run two marathons"})
        state = reduce(state, UpdateDream(renamed))
        assert state.dreams[0].title == "Run two marathons"
        assert reduce(state, DeleteDream("d1")).dreams == ()

    def test_update_template_inserts_when_missing(self):
        template = WeeklyGoalTemplate(id="t1", goal_id="g1", title="Run")
        state = reduce(AppState(user_id="u1"), UpdateTemplate(template))
        assert state.templates == (template,)
        state = reduce(state, DeleteTemplate("t1"))
        assert state.templates == ()

    def test_upsert_instance(self):
        inst = WeeklyGoalInstance(id="t1_2025-W43", title="Run", week_id="2025-W43")
        state = reduce(AppState(user_id="u1"), UpsertInstance(inst))
        done = inst.model_copy(update={"completed": True})
        state = reduce(state, UpsertInstance(done))
        assert state.instances == (done,)

    def test_replace_current_week(self):
        inst = WeeklyGoalInstance(id="a", title="Run", week_id="2025-W44")
        state = reduce(AppState(user_id="u1", week_id="2025-W43"), ReplaceCurrentWeek("2025-W44", (inst,)))
        assert state.week_id == "2025-W44"
        assert state.instances == (inst,)

    def test_log_week_completion_merges(self):
        state = reduce(AppState(user_id="u1"), LoadState(dreams=(DREAM,)))
        state = reduce(state, LogWeekCompletion("g1", "2025-W43", True))
        state = reduce(state, LogWeekCompletion("g1", "2025-W44", False))
        assert state.dreams[0].goals[0].week_log == {"2025-W43": True, "2025-W44": False}

    def test_unknown_command(self):
        with pytest.raises(TypeError):
            reduce(AppState(user_id="u1"), object())


class TestStateStore:

    def test_dispatch_counts_versions_and_notifies(self):
        store = StateStore("u1")
        seen = []
        unsubscribe = store.subscribe(lambda state, command: seen.append(type(command).__name__))

        store.dispatch(AddDream(DREAM), SetScore(10))
        unsubscribe()
        store.dispatch(SetScore(20))

        assert store.version == 3
        assert store.state.score == 20
        assert seen == ["AddDream", "SetScore"]

    @pytest.mark.asyncio
    async def test_commit_after_failure_dispatches_nothing(self):
        """
        SCENARIO: persistence fails on a persist-first write

        EXPECTED: no command applied, version unchanged
        """
        store = StateStore("u1")
        result = await store.commit_after(failed, [AddDream(DREAM)])
        assert not result.success
        assert store.version == 0
        assert store.state.dreams == ()

    @pytest.mark.asyncio
    async def test_commit_after_success(self):
        store = StateStore("u1")
        result = await store.commit_after(ok, [AddDream(DREAM)])
        assert result.success
        assert store.state.dreams == (DREAM,)

    @pytest.mark.asyncio
    async def test_apply_optimistic_rolls_back(self):
        """
        SCENARIO: optimistic write whose persistence fails

        EXPECTED: state equals the pre-dispatch snapshot
        """
        store = StateStore("u1")
        store.dispatch(AddDream(DREAM))
        before = store.state

        renamed = DREAM.model_copy(update={"title": "Other"})
        result = await store.apply_optimistic([UpdateDream(renamed)], failed)

        assert not result.success
        assert store.state == before

    @pytest.mark.asyncio
    async def test_apply_optimistic_rolls_back_on_exception(self):
        store = StateStore("u1")

        async def boom():
            raise RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            await store.apply_optimistic([AddTemplate(WeeklyGoalTemplate(id="t1", title="Run"))], boom)
        assert store.state.templates == ()

    @pytest.mark.asyncio
    async def test_apply_optimistic_keeps_state_on_success(self):
        store = StateStore("u1")
        await store.apply_optimistic([AddDream(DREAM)], ok)
        assert store.state.dreams == (DREAM,)
