"""
State Store - in-memory application state for one user
======================================================
Commands are frozen dataclasses; reduce() is the only code that builds a
new AppState from an old one and never performs I/O. StateStore wraps the
reducer with a version counter, snapshots and the two persistence
orderings used by the lifecycle manager:

- apply_optimistic: apply, persist, restore the snapshot on failure
- commit_after:     persist, apply only on success
"""
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, List, Optional, Tuple

from dreamgoals.events import EventBus
from dreamgoals.logging_config import get_logger
from dreamgoals.schemas import (
    Dream,
    OperationResult,
    ScoringEntry,
    WeeklyGoalInstance,
    WeeklyGoalTemplate,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class AppState:
    user_id: str
    dreams: Tuple[Dream, ...] = ()
    templates: Tuple[WeeklyGoalTemplate, ...] = ()
    week_id: Optional[str] = None
    # instances of week_id only
    instances: Tuple[WeeklyGoalInstance, ...] = ()
    scoring_history: Tuple[ScoringEntry, ...] = ()
    score: int = 0


# =============================================================================
# Commands
# =============================================================================

@dataclass(frozen=True)
class LoadState:
    dreams: Tuple[Dream, ...] = ()
    templates: Tuple[WeeklyGoalTemplate, ...] = ()
    week_id: Optional[str] = None
    instances: Tuple[WeeklyGoalInstance, ...] = ()
    scoring_history: Tuple[ScoringEntry, ...] = ()
    score: int = 0


@dataclass(frozen=True)
class AddDream:
    dream: Dream


@dataclass(frozen=True)
class UpdateDream:
    dream: Dream


@dataclass(frozen=True)
class DeleteDream:
    dream_id: str


@dataclass(frozen=True)
class AddTemplate:
    template: WeeklyGoalTemplate


@dataclass(frozen=True)
class UpdateTemplate:
    template: WeeklyGoalTemplate


@dataclass(frozen=True)
class DeleteTemplate:
    template_id: str


@dataclass(frozen=True)
class UpsertInstance:
    instance: WeeklyGoalInstance


@dataclass(frozen=True)
class DeleteInstance:
    instance_id: str


@dataclass(frozen=True)
class ReplaceCurrentWeek:
    week_id: str
    instances: Tuple[WeeklyGoalInstance, ...] = ()


@dataclass(frozen=True)
class LogWeekCompletion:
    goal_id: str
    iso_week: str
    completed: bool


@dataclass(frozen=True)
class AddScoringEntry:
    entry: ScoringEntry


@dataclass(frozen=True)
class SetScore:
    total: int


# =============================================================================
# Reducer
# =============================================================================

def _load(state: AppState, cmd: LoadState) -> AppState:
    return AppState(
        user_id=state.user_id,
        dreams=tuple(cmd.dreams),
        templates=tuple(cmd.templates),
        week_id=cmd.week_id,
        instances=tuple(cmd.instances),
        scoring_history=tuple(cmd.scoring_history),
        score=cmd.score,
    )


def _add_dream(state: AppState, cmd: AddDream) -> AppState:
    return replace(state, dreams=state.dreams + (cmd.dream,))


def _update_dream(state: AppState, cmd: UpdateDream) -> AppState:
    return replace(state, dreams=tuple(cmd.dream if d.id == cmd.dream.id else d for d in state.dreams))


def _delete_dream(state: AppState, cmd: DeleteDream) -> AppState:
    return replace(state, dreams=tuple(d for d in state.dreams if d.id != cmd.dream_id))


def _add_template(state: AppState, cmd: AddTemplate) -> AppState:
    return replace(state, templates=state.templates + (cmd.template,))


def _update_template(state: AppState, cmd: UpdateTemplate) -> AppState:
    templates = state.templates
    if any(t.id == cmd.template.id for t in templates):
        templates = tuple(cmd.template if t.id == cmd.template.id else t for t in templates)
    else:
        templates = templates + (cmd.template,)
    return replace(state, templates=templates)


def _delete_template(state: AppState, cmd: DeleteTemplate) -> AppState:
    return replace(state, templates=tuple(t for t in state.templates if t.id != cmd.template_id))


def _upsert_instance(state: AppState, cmd: UpsertInstance) -> AppState:
    instances = state.instances
    if any(i.id == cmd.instance.id for i in instances):
        instances = tuple(cmd.instance if i.id == cmd.instance.id else i for i in instances)
    else:
        instances = instances + (cmd.instance,)
    return replace(state, instances=instances)


def _delete_instance(state: AppState, cmd: DeleteInstance) -> AppState:
    return replace(state, instances=tuple(i for i in state.instances if i.id != cmd.instance_id))


def _replace_current_week(state: AppState, cmd: ReplaceCurrentWeek) -> AppState:
    return replace(state, week_id=cmd.week_id, instances=tuple(cmd.instances))


def _log_week_completion(state: AppState, cmd: LogWeekCompletion) -> AppState:
    def log(dream: Dream) -> Dream:
        if dream.find_goal(cmd.goal_id) is None:
            return dream
        goals = tuple(
            g.model_copy(update={"week_log": {**g.week_log, cmd.iso_week: cmd.completed}})
            if g.id == cmd.goal_id else g
            for g in dream.goals
        )
        return dream.model_copy(update={"goals": goals})

    return replace(state, dreams=tuple(log(d) for d in state.dreams))


def _add_scoring_entry(state: AppState, cmd: AddScoringEntry) -> AppState:
    return replace(state, scoring_history=state.scoring_history + (cmd.entry,))


def _set_score(state: AppState, cmd: SetScore) -> AppState:
    return replace(state, score=cmd.total)


_REDUCERS = {
    LoadState: _load,
    AddDream: _add_dream,
    UpdateDream: _update_dream,
    DeleteDream: _delete_dream,
    AddTemplate: _add_template,
    UpdateTemplate: _update_template,
    DeleteTemplate: _delete_template,
    UpsertInstance: _upsert_instance,
    DeleteInstance: _delete_instance,
    ReplaceCurrentWeek: _replace_current_week,
    LogWeekCompletion: _log_week_completion,
    AddScoringEntry: _add_scoring_entry,
    SetScore: _set_score,
}


def reduce(state: AppState, command) -> AppState:
    """Apply one command and return the new snapshot"""
    try:
        handler = _REDUCERS[type(command)]
    except KeyError:
        raise TypeError(f"Unknown command: {type(command).__name__}")
    return handler(state, command)


# =============================================================================
# Store
# =============================================================================

Listener = Callable[[AppState, object], None]
Persist = Callable[[], Awaitable[OperationResult]]


@dataclass(frozen=True)
class Snapshot:
    state: AppState
    version: int


class StateStore:
    """
    Holds the current AppState.

    Usage:
        store = StateStore("user-1")
        store.dispatch(UpdateDream(dream), UpdateTemplate(template))
        result = await store.commit_after(persist, [UpdateDream(dream)])
    """

    def __init__(self, user_id: str, bus: EventBus | None = None):
        self._state = AppState(user_id=user_id)
        self._version = 0
        self._listeners: List[Listener] = []
        self.bus = bus or EventBus()

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def version(self) -> int:
        """Number of commands applied (restores included)"""
        return self._version

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def dispatch(self, *commands) -> AppState:
        for command in commands:
            self._state = reduce(self._state, command)
            self._version += 1
            for listener in list(self._listeners):
                listener(self._state, command)
        return self._state

    def snapshot(self) -> Snapshot:
        return Snapshot(state=self._state, version=self._version)

    def restore(self, snapshot: Snapshot) -> None:
        self._state = snapshot.state
        self._version += 1
        logger.info("state_restored", user_id=self._state.user_id, to_version=snapshot.version)
        for listener in list(self._listeners):
            listener(self._state, snapshot)

    async def apply_optimistic(self, commands, persist: Persist) -> OperationResult:
        """Apply first; if persisting fails, put the snapshot back."""
        snapshot = self.snapshot()
        self.dispatch(*commands)
        try:
            result = await persist()
        except Exception:
            self.restore(snapshot)
            raise
        if not result.success:
            self.restore(snapshot)
        return result

    async def commit_after(self, persist: Persist, commands) -> OperationResult:
        """Persist first; apply only if it succeeded."""
        result = await persist()
        if result.success:
            self.dispatch(*commands)
        return result
