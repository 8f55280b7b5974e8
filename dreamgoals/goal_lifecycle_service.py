"""
GOAL LIFECYCLE SERVICE - Application Layer
==========================================

ARCHITECTURE:
- Domain Layer: domain/ - state machine, streaks, pure builders
- Application Layer: this file - orchestration, persistence ordering, awards
- Infrastructure: infrastructure/ - item stores, per-goal locks

Every public operation:
- holds the per-goal lock while it runs
- validates before any persistence call
- returns an OperationResult (domain errors become failed results)

Collections are written whole, so every read-modify-write of the user's
dreams, templates, week list or score runs under one per-user write lock,
taken inside the per-goal lock and never nested.

Persistence ordering:
- goal + template changes are written in ONE save_dreams call and only
  dispatched to the StateStore after that call succeeds
- update_goal / update_dream are optimistic: applied first, rolled back
  and reported through an operation_failed event if the write fails
- scoring entries are appended after the goal write they belong to
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from dreamgoals.calendar_math import (
    current_iso_week,
    is_valid_week_id,
    month_id_from_week,
    months_to_weeks,
    weeks_until_date,
)
from dreamgoals.domain.goal_builders import (
    append_goal,
    build_goal,
    build_instance,
    build_template,
    decrement_instance,
    find_goal,
    find_template,
    increment_instance,
    instance_id,
    is_template_active_for_week,
    remove_goal,
    replace_goal,
    replace_template,
    skip_instance,
    sync_template,
    toggle_instance,
    upsert_instance,
)
from dreamgoals.domain.goal_domain_service import GoalState, TransitionReason, goal_domain_service
from dreamgoals.domain.streak_engine import consistency_progress, monthly_progress
from dreamgoals.error_handler import ErrorHandler, returns_result
from dreamgoals.events import DomainEvent, DomainEventType
from dreamgoals.exceptions import (
    DreamNotFound,
    GoalNotFound,
    GoalValidationError,
    InvalidGoalState,
    NonCurrentWeekMutation,
    PersistenceFailed,
)
from dreamgoals.infrastructure.locks import KeyedLock
from dreamgoals.logging_config import get_logger, log_goal_transition
from dreamgoals.schemas import (
    Dream,
    Goal,
    GoalSpec,
    GoalType,
    OperationResult,
    Recurrence,
    ScoringRules,
    ScoringSource,
    WeeklyGoalInstance,
    WeeklyGoalTemplate,
)
from dreamgoals.scoring_engine import ScoringService
from dreamgoals.state_store import (
    AddDream,
    AddScoringEntry,
    AddTemplate,
    AppState,
    DeleteDream,
    DeleteInstance,
    DeleteTemplate,
    LoadState,
    LogWeekCompletion,
    ReplaceCurrentWeek,
    SetScore,
    StateStore,
    UpdateDream,
    UpdateTemplate,
    UpsertInstance,
)

logger = get_logger(__name__)

# Owned by the engine: changed only through transitions and completion logs
LIFECYCLE_FIELDS = ("active", "completed", "completed_at", "week_log", "month_log", "created_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _persistence_error(operation: str) -> Callable[[OperationResult], PersistenceFailed]:
    return lambda r: PersistenceFailed(operation, r.error.message if r.error else "unknown")


class GoalLifecycleManager:
    """
    Goal/template/instance orchestration for one user.

    Usage:
        manager = GoalLifecycleManager("user-1", InMemoryItemStore())
        await manager.load()
        result = await manager.add_goal("dream-1", {"title": "Run", "targetWeeks": 12})
        if result.success:
            goal = result.data
    """

    def __init__(
        self,
        user_id: str,
        store,
        state_store: StateStore | None = None,
        scoring: ScoringService | None = None,
        rules: ScoringRules | None = None,
        clock: Callable[[], datetime] = _utcnow,
        locks: KeyedLock | None = None,
    ):
        self.user_id = user_id
        self._store = store
        self.state_store = state_store or StateStore(user_id)
        self.scoring = scoring or ScoringService(store, rules)
        self._clock = clock
        self._locks = locks or KeyedLock()
        self._domain = goal_domain_service

    # =========================================================================
    # Helpers
    # =========================================================================

    @property
    def state(self) -> AppState:
        return self.state_store.state

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    def current_week(self) -> str:
        return current_iso_week(self._clock())

    def _writing(self):
        """Per-user write lock; not re-entrant, so never take it twice"""
        return self._locks.hold(f"user:{self.user_id}")

    def _lock_key(self, goal_id: str) -> str:
        """Template and instance ids lock on the goal they belong to"""
        for template in self.state.templates:
            if template.id == goal_id:
                return template.goal_id or template.id
        for instance in self.state.instances:
            if instance.id == goal_id:
                return instance.goal_id or instance.template_id or instance.id
        return goal_id

    def _require_dream(self, dream_id: str) -> Dream:
        dream = next((d for d in self.state.dreams if d.id == dream_id), None)
        if dream is None:
            raise DreamNotFound(dream_id)
        return dream

    def _week_goals(self, week_id: str) -> Tuple[WeeklyGoalInstance, ...]:
        """Instances of week_id known to the store; empty after a week rollover"""
        if self.state.week_id != week_id:
            return ()
        return self.state.instances

    async def _publish(self, event_type: DomainEventType, goal_id: Optional[str] = None, **payload) -> None:
        await self.state_store.bus.publish(DomainEvent(
            event_type=event_type,
            user_id=self.user_id,
            goal_id=goal_id,
            payload=payload,
        ))

    async def _award(self, source: ScoringSource, activity: str, **metadata) -> None:
        async with self._writing():
            award = await self.scoring.award(
                self.user_id, self._clock().year, source, activity, metadata, now=self._clock()
            )
            self.state_store.dispatch(AddScoringEntry(award.entry), SetScore(award.total_score))
        await self._publish(
            DomainEventType.SCORE_AWARDED,
            source=award.entry.source.value,
            points=award.entry.points,
            total_score=award.total_score,
        )

    def _log_deleted(self, goals) -> None:
        for goal in goals:
            self._transition(goal, GoalState.DELETED, TransitionReason.USER_REQUEST)

    def _transition(self, goal: Goal, new_state: GoalState, reason: TransitionReason) -> Goal:
        updated, event = self._domain.transition(goal, new_state, reason.value, at=self._now_iso())
        log_goal_transition(
            goal_id=event.goal_id,
            from_state=event.from_state,
            to_state=event.to_state,
            actor=self.user_id,
            reason=event.reason,
            at=event.timestamp,
        )
        return updated

    # =========================================================================
    # Bootstrap
    # =========================================================================

    @returns_result("load")
    async def load(self) -> Dict[str, Any]:
        """Read dreams, templates, the current week and this year's score"""
        week_id = self.current_week()
        async with self._writing():
            collections = ErrorHandler.raise_for_result(
                await self._store.load_dreams(self.user_id), _persistence_error("load_dreams")
            )
            current = ErrorHandler.raise_for_result(
                await self._store.get_current_week(self.user_id), _persistence_error("get_current_week")
            )
            scoring = ErrorHandler.raise_for_result(
                await self._store.get_scoring(self.user_id, self._clock().year), _persistence_error("get_scoring")
            )

            instances = current.goals if current is not None and current.week_id == week_id else ()
            self.state_store.dispatch(LoadState(
                dreams=tuple(collections["dreams"]),
                templates=tuple(collections["templates"]),
                week_id=week_id,
                instances=tuple(instances),
                scoring_history=tuple(scoring["entries"]),
                score=scoring["totalScore"],
            ))
        logger.info(
            "state_loaded",
            user_id=self.user_id,
            week_id=week_id,
            dreams=len(self.state.dreams),
            templates=len(self.state.templates),
            instances=len(instances),
        )
        return {"week_id": week_id, "score": self.state.score}

    # =========================================================================
    # Dreams
    # =========================================================================

    @returns_result("add_dream")
    async def add_dream(self, dream: Dream) -> Dream:
        if not dream.title.strip():
            raise GoalValidationError("title", "must not be empty")
        async with self._locks.hold(f"dream:{dream.id}"):
            async with self._writing():
                if any(d.id == dream.id for d in self.state.dreams):
                    raise GoalValidationError("id", "already exists")
                dreams = self.state.dreams + (dream,)
                templates = self.state.templates
                result = await self.state_store.commit_after(
                    lambda: self._store.save_dreams(self.user_id, dreams, templates),
                    [AddDream(dream)],
                )
            ErrorHandler.raise_for_result(result, _persistence_error("save_dreams"))
            await self._publish(DomainEventType.DREAMS_UPDATED, dream_id=dream.id)
            await self._award(ScoringSource.DREAM, f'Added dream: "{dream.title}"', dream_id=dream.id)
        return dream

    @returns_result("update_dream")
    async def update_dream(self, dream: Dream) -> Dream:
        self._require_dream(dream.id)
        async with self._locks.hold(f"dream:{dream.id}"):
            async with self._writing():
                dreams = tuple(dream if d.id == dream.id else d for d in self.state.dreams)
                result = await self._apply_optimistic([UpdateDream(dream)], dreams, self.state.templates)
            await self._raise_if_failed("update_dream", result)
            await self._publish(DomainEventType.DREAMS_UPDATED, dream_id=dream.id)
        return dream

    @returns_result("delete_dream")
    async def delete_dream(self, dream_id: str) -> Dict[str, Any]:
        """Remove a dream, its templates and its current-week instances"""
        self._require_dream(dream_id)
        async with self._locks.hold(f"dream:{dream_id}"):
            async with self._writing():
                dream = self._require_dream(dream_id)
                goal_ids = {g.id for g in dream.goals}
                doomed = [
                    t for t in self.state.templates
                    if t.dream_id == dream_id or any(t.links_to(gid) for gid in goal_ids)
                ]
                doomed_ids = {t.id for t in doomed}
                dreams = tuple(d for d in self.state.dreams if d.id != dream_id)
                templates = tuple(t for t in self.state.templates if t.id not in doomed_ids)

                result = await self.state_store.commit_after(
                    lambda: self._store.save_dreams(self.user_id, dreams, templates),
                    [DeleteDream(dream_id)] + [DeleteTemplate(t.id) for t in doomed],
                )
            ErrorHandler.raise_for_result(result, _persistence_error("save_dreams"))
            self._log_deleted(dream.goals)

            removed = await self._remove_current_instances(
                lambda i: i.dream_id == dream_id or i.template_id in doomed_ids or i.goal_id in goal_ids
            )
            logger.info(
                "dream_deleted",
                dream_id=dream_id,
                templates_removed=len(doomed),
                instances_removed=removed,
            )
            await self._publish(DomainEventType.DREAMS_UPDATED, dream_id=dream_id)
        return {"dream_id": dream_id, "templates_removed": len(doomed), "instances_removed": removed}

    async def _apply_optimistic(self, commands: List, dreams, templates) -> OperationResult:
        """Caller holds the write lock, so a rollback cannot undo another operation"""
        return await self.state_store.apply_optimistic(
            commands,
            lambda: self._store.save_dreams(self.user_id, dreams, templates),
        )

    async def _raise_if_failed(self, operation: str, result: OperationResult) -> None:
        if result.success:
            return
        message = result.error.message if result.error else "unknown"
        await self._publish(DomainEventType.OPERATION_FAILED, operation=operation, message=message)
        raise PersistenceFailed(operation, message)

    async def _remove_current_instances(self, predicate: Callable[[WeeklyGoalInstance], bool]) -> int:
        week_id = self.current_week()
        async with self._writing():
            week_goals = self._week_goals(week_id)
            doomed = [i for i in week_goals if predicate(i)]
            if not doomed:
                return 0
            remaining = tuple(i for i in week_goals if not predicate(i))
            result = await self.state_store.commit_after(
                lambda: self._store.save_current_week(self.user_id, week_id, remaining),
                [DeleteInstance(i.id) for i in doomed],
            )
        ErrorHandler.raise_for_result(result, _persistence_error("save_current_week"))
        return len(doomed)

    # =========================================================================
    # Dream goals
    # =========================================================================

    @returns_result("add_goal")
    async def add_goal(self, dream_id: str, goal_spec: Union[GoalSpec, Dict[str, Any]]) -> Goal:
        """
        Create a goal and its template, written together in one save_dreams call.

        Raises (as failed results):
            GoalValidationError: empty title, missing/past targetDate, bad numbers
            DreamNotFound: unknown dream_id
            PersistenceFailed: the store rejected the write
        """
        spec = self._coerce_spec(goal_spec)
        dream = self._require_dream(dream_id)
        goal_id = spec.id or f"goal_{uuid.uuid4().hex[:12]}"
        if dream.find_goal(goal_id) is not None:
            raise GoalValidationError("id", "already exists")

        async with self._locks.hold(goal_id):
            now = self._now_iso()
            goal = build_goal(spec, goal_id, self.current_week(), now)
            goal = self._transition(goal, GoalState.ACTIVE, TransitionReason.GOAL_ADDED)

            async with self._writing():
                dream = self._require_dream(dream_id)
                if dream.find_goal(goal_id) is not None:
                    raise GoalValidationError("id", "already exists")
                template = build_template(goal, dream, now)
                dreams = append_goal(self.state.dreams, dream_id, goal)
                templates = self.state.templates + (template,)
                updated_dream = next(d for d in dreams if d.id == dream_id)

                result = await self.state_store.commit_after(
                    lambda: self._store.save_dreams(self.user_id, dreams, templates),
                    [UpdateDream(updated_dream), AddTemplate(template)],
                )
            ErrorHandler.raise_for_result(result, _persistence_error("save_dreams"))

            logger.info(
                "goal_added",
                goal_id=goal.id,
                dream_id=dream_id,
                goal_type=goal.type.value,
                target_weeks=goal.target_weeks,
            )
            await self._publish(DomainEventType.GOAL_ADDED, goal_id=goal.id, dream_id=dream_id)
            await self._publish(DomainEventType.DREAMS_UPDATED, dream_id=dream_id)
        return goal

    @staticmethod
    def _coerce_spec(goal_spec: Union[GoalSpec, Dict[str, Any]]) -> GoalSpec:
        if isinstance(goal_spec, GoalSpec):
            return goal_spec
        try:
            return GoalSpec.model_validate(goal_spec)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "goal"
            raise GoalValidationError(field, first["msg"])

    @returns_result("update_goal")
    async def update_goal(self, dream_id: str, goal: Goal) -> Goal:
        """
        Replace a goal's editable fields; applied optimistically, rolled
        back if the write fails.

        Lifecycle fields (active, completed, the completion logs) keep their
        stored values: a goal completes only through its streak or deadline.
        """
        dream = self._require_dream(dream_id)
        if dream.find_goal(goal.id) is None:
            raise GoalNotFound(goal.id)
        if not goal.title.strip():
            raise GoalValidationError("title", "must not be empty")

        async with self._locks.hold(goal.id):
            async with self._writing():
                stored = self._require_dream(dream_id).find_goal(goal.id)
                if stored is None:
                    raise GoalNotFound(goal.id)
                goal = self._derive_weeks(self._keep_lifecycle(goal, stored))
                dreams = replace_goal(self.state.dreams, dream_id, goal)
                updated_dream = next(d for d in dreams if d.id == dream_id)
                commands: List = [UpdateDream(updated_dream)]

                templates = self.state.templates
                template = find_template(templates, goal.id)
                if template is not None:
                    synced = sync_template(template, goal)
                    templates = replace_template(templates, synced)
                    commands.append(UpdateTemplate(synced))

                result = await self._apply_optimistic(commands, dreams, templates)
            await self._raise_if_failed("update_goal", result)
            logger.info("goal_updated", goal_id=goal.id, dream_id=dream_id)
            await self._publish(DomainEventType.GOAL_UPDATED, goal_id=goal.id, dream_id=dream_id)
        return goal

    @staticmethod
    def _keep_lifecycle(goal: Goal, stored: Goal) -> Goal:
        ignored = [f for f in LIFECYCLE_FIELDS if getattr(goal, f) != getattr(stored, f)]
        if ignored:
            logger.warning("goal_lifecycle_fields_ignored", goal_id=goal.id, fields=ignored)
        return goal.model_copy(update={f: getattr(stored, f) for f in LIFECYCLE_FIELDS})

    def _derive_weeks(self, goal: Goal) -> Goal:
        """Recompute week counts that follow from targetDate / targetMonths"""
        if goal.type == GoalType.DEADLINE and goal.target_date and not goal.completed:
            return goal.model_copy(update={
                "weeks_remaining": weeks_until_date(goal.target_date, self.current_week())
            })
        if goal.type == GoalType.CONSISTENCY and goal.target_months and goal.recurrence == Recurrence.MONTHLY:
            return goal.model_copy(update={"target_weeks": months_to_weeks(goal.target_months)})
        return goal

    @returns_result("delete_goal")
    async def delete_goal(self, dream_id: str, goal_id: str) -> Dict[str, Any]:
        """Remove a goal and its template in one write, then its current-week instances"""
        dream = self._require_dream(dream_id)
        if dream.find_goal(goal_id) is None:
            raise GoalNotFound(goal_id)

        async with self._locks.hold(goal_id):
            async with self._writing():
                goal = self._require_dream(dream_id).find_goal(goal_id)
                if goal is None:
                    raise GoalNotFound(goal_id)
                dreams = remove_goal(self.state.dreams, dream_id, goal_id)
                updated_dream = next(d for d in dreams if d.id == dream_id)
                template = find_template(self.state.templates, goal_id)
                templates = tuple(t for t in self.state.templates if template is None or t.id != template.id)

                commands: List = [UpdateDream(updated_dream)]
                if template is not None:
                    commands.append(DeleteTemplate(template.id))
                result = await self.state_store.commit_after(
                    lambda: self._store.save_dreams(self.user_id, dreams, templates),
                    commands,
                )
            ErrorHandler.raise_for_result(result, _persistence_error("save_dreams"))
            self._log_deleted([goal])

            template_id = template.id if template is not None else None
            removed = await self._remove_current_instances(
                lambda i: i.goal_id == goal_id or (template_id is not None and i.template_id == template_id)
            )
            logger.info("goal_deleted", goal_id=goal_id, dream_id=dream_id, instances_removed=removed)
            await self._publish(DomainEventType.GOAL_DELETED, goal_id=goal_id, dream_id=dream_id)
            await self._publish(DomainEventType.DREAMS_UPDATED, dream_id=dream_id)
        return {"goal_id": goal_id, "instances_removed": removed}

    # =========================================================================
    # Atomic goal + template writes
    # =========================================================================

    @returns_result("update_consistency_goal_and_template")
    async def update_consistency_goal_and_template(
        self,
        dream_id: str,
        goal: Goal,
        template: Optional[WeeklyGoalTemplate] = None,
    ) -> Goal:
        async with self._locks.hold(goal.id):
            return await self._write_goal_and_template(dream_id, goal, template)

    @returns_result("update_deadline_goal_and_template")
    async def update_deadline_goal_and_template(
        self,
        dream_id: str,
        goal: Goal,
        template: Optional[WeeklyGoalTemplate] = None,
    ) -> Goal:
        """A completed deadline goal has weeksRemaining -1; an open one counts down to targetDate"""
        if goal.type != GoalType.DEADLINE:
            raise GoalValidationError("type", "must be deadline")
        async with self._locks.hold(goal.id):
            if goal.completed:
                goal = goal.model_copy(update={"weeks_remaining": -1})
            elif goal.target_date:
                goal = goal.model_copy(update={
                    "weeks_remaining": weeks_until_date(goal.target_date, self.current_week())
                })
            return await self._write_goal_and_template(dream_id, goal, template)

    async def _write_goal_and_template(
        self,
        dream_id: str,
        goal: Goal,
        template: Optional[WeeklyGoalTemplate] = None,
        extra_commands: Sequence = (),
    ) -> Goal:
        """
        Build the full dream and template collections, persist them in one
        save_dreams call, dispatch only after it succeeded.
        """
        async with self._writing():
            dream = self._require_dream(dream_id)
            if dream.find_goal(goal.id) is None:
                raise GoalNotFound(goal.id)

            template = template or find_template(self.state.templates, goal.id)
            dreams = replace_goal(self.state.dreams, dream_id, goal)
            updated_dream = next(d for d in dreams if d.id == dream_id)
            commands: List = list(extra_commands) + [UpdateDream(updated_dream)]

            templates = self.state.templates
            if template is not None:
                synced = sync_template(template, goal)
                templates = replace_template(templates, synced)
                commands.append(UpdateTemplate(synced))

            result = await self.state_store.commit_after(
                lambda: self._store.save_dreams(self.user_id, dreams, templates),
                commands,
            )
        if not result.success:
            logger.warning(
                "goal_template_write_failed",
                goal_id=goal.id,
                dream_id=dream_id,
                error=result.error.message if result.error else None,
            )
            raise PersistenceFailed("save_dreams", result.error.message if result.error else "unknown")

        await self._publish(DomainEventType.GOAL_UPDATED, goal_id=goal.id, dream_id=dream_id)
        await self._publish(DomainEventType.DREAMS_UPDATED, dream_id=dream_id)
        return goal

    # =========================================================================
    # Consistency tracking
    # =========================================================================

    @returns_result("log_weekly_completion")
    async def log_weekly_completion(self, goal_id: str, iso_week: str, completed: bool) -> Dict[str, Any]:
        """
        Record one week for a consistency goal and award points.

        A `week` entry is awarded every time `completed` is true; a
        `milestone` entry once, when the streak first reaches targetWeeks.
        """
        async with self._locks.hold(goal_id):
            return await self._log_week(goal_id, iso_week, completed, award_week=True)

    async def _log_week(self, goal_id: str, iso_week: str, completed: bool, award_week: bool) -> Dict[str, Any]:
        if not is_valid_week_id(iso_week):
            raise GoalValidationError("isoWeek", "is not a valid ISO week")
        dream, goal = find_goal(self.state.dreams, goal_id)
        if goal is None:
            raise GoalNotFound(goal_id)
        if goal.type != GoalType.CONSISTENCY:
            raise GoalValidationError("type", "must be consistency")
        if goal.recurrence == Recurrence.MONTHLY:
            raise GoalValidationError("recurrence", "monthly goals are counted per month")

        updated = goal.model_copy(update={"week_log": {**goal.week_log, iso_week: completed}})
        progress = consistency_progress(updated, until_week=self.current_week())

        reached_now = progress.reached and not updated.completed
        if reached_now:
            updated = self._transition(updated, GoalState.COMPLETED, TransitionReason.STREAK_TARGET_REACHED)

        await self._write_goal_and_template(
            dream.id,
            updated,
            extra_commands=[LogWeekCompletion(goal_id, iso_week, completed)],
        )
        logger.info(
            "weekly_completion_logged",
            goal_id=goal_id,
            iso_week=iso_week,
            completed=completed,
            streak=progress.streak,
            target_weeks=progress.target_weeks,
        )

        if reached_now:
            await self._publish(DomainEventType.GOAL_COMPLETED, goal_id=goal_id, dream_id=dream.id)
            await self._award(
                ScoringSource.MILESTONE,
                f'Completed goal: "{updated.title}"',
                dream_id=dream.id,
                week_id=iso_week,
            )
        if completed and award_week:
            await self._award(
                ScoringSource.WEEK,
                f'Completed: "{updated.title}"',
                dream_id=dream.id,
                week_id=iso_week,
            )
        return {"goal": updated, "streak": progress.streak, "goal_completed": reached_now}

    async def _log_month(self, goal_id: str, instance: WeeklyGoalInstance) -> None:
        """
        Store the month's completion count on the goal and complete it once
        targetMonths consecutive months reached the frequency.
        """
        dream, goal = find_goal(self.state.dreams, goal_id)
        if goal is None:
            return
        month = instance.month_id or month_id_from_week(instance.week_id)
        updated = goal.model_copy(update={"month_log": {**goal.month_log, month: instance.completion_count}})
        progress = monthly_progress(updated, until_month=month_id_from_week(self.current_week()))

        reached_now = progress.reached and not updated.completed
        if reached_now:
            updated = self._transition(updated, GoalState.COMPLETED, TransitionReason.MONTH_TARGET_REACHED)

        await self._write_goal_and_template(dream.id, updated)
        logger.info(
            "monthly_completion_logged",
            goal_id=goal_id,
            month_id=month,
            completion_count=instance.completion_count,
            streak=progress.streak,
            target_months=progress.target_months,
        )
        if reached_now:
            await self._publish(DomainEventType.GOAL_COMPLETED, goal_id=goal_id, dream_id=dream.id)
            await self._award(
                ScoringSource.MILESTONE,
                f'Completed goal: "{updated.title}"',
                dream_id=dream.id,
                week_id=instance.week_id,
            )

    async def _set_deadline_completion(self, goal_id: Optional[str], completed: bool) -> None:
        """Carry a deadline instance's completion over to its goal and template"""
        dream, goal = find_goal(self.state.dreams, goal_id) if goal_id else (None, None)
        if goal is None:
            return
        if completed and not goal.completed:
            updated = self._transition(goal, GoalState.COMPLETED, TransitionReason.DEADLINE_INSTANCE_COMPLETED)
            updated = updated.model_copy(update={"weeks_remaining": -1})
        elif not completed and goal.completed:
            updated = self._transition(goal, GoalState.ACTIVE, TransitionReason.DEADLINE_INSTANCE_REOPENED)
            if updated.target_date:
                updated = updated.model_copy(update={
                    "weeks_remaining": weeks_until_date(updated.target_date, self.current_week())
                })
        else:
            return

        await self._write_goal_and_template(dream.id, updated)
        if completed:
            await self._publish(DomainEventType.GOAL_COMPLETED, goal_id=goal.id, dream_id=dream.id)

    # =========================================================================
    # Weekly instances (current week only)
    # =========================================================================

    def _resolve_instance(self, goal_id: str) -> Tuple[WeeklyGoalInstance, str]:
        """
        Find (or build) this week's instance for a template id or an instance id.

        Raises:
            NonCurrentWeekMutation: the instance belongs to another week
            InvalidGoalState: the template does not run this week
            GoalNotFound: neither a template nor an instance has this id
        """
        week_id = self.current_week()
        week_goals = self._week_goals(week_id)

        template = next((t for t in self.state.templates if t.id == goal_id), None)
        if template is not None:
            existing = next((i for i in week_goals if i.id == instance_id(template.id, week_id)), None)
            if existing is not None:
                return existing, week_id
            if not is_template_active_for_week(template, week_id):
                raise InvalidGoalState(template.id, "inactive", ["active"])
            month_count, month_dates = self._month_so_far(template, week_id)
            return build_instance(template, week_id, self._now_iso(), month_count, month_dates), week_id

        instance = next((i for i in self.state.instances if i.id == goal_id), None)
        if instance is None:
            raise GoalNotFound(goal_id)
        if instance.week_id != week_id:
            logger.warning(
                "non_current_week_mutation_ignored",
                goal_id=goal_id,
                week_id=instance.week_id,
                current_week=week_id,
            )
            raise NonCurrentWeekMutation(goal_id, instance.week_id, week_id)
        return instance, week_id

    def _month_so_far(self, template: WeeklyGoalTemplate, week_id: str) -> Tuple[int, Tuple[str, ...]]:
        """
        Completions a monthly template already has in week_id's month: from
        last week's instance while it is still loaded, else from the goal's
        month log.
        """
        if template.recurrence != Recurrence.MONTHLY:
            return 0, ()
        month = month_id_from_week(week_id)
        previous = next(
            (
                i for i in self.state.instances
                if i.template_id == template.id and i.month_id == month and i.week_id != week_id
            ),
            None,
        )
        if previous is not None:
            return previous.completion_count, previous.completion_dates
        _, goal = find_goal(self.state.dreams, template.goal_id) if template.goal_id else (None, None)
        if goal is not None:
            return goal.month_log.get(month, 0), ()
        return 0, ()

    async def _save_instance(self, instance: WeeklyGoalInstance, week_id: str) -> None:
        """Persist the whole week list with `instance` upserted, then dispatch"""
        async with self._writing():
            week_goals = upsert_instance(self._week_goals(week_id), instance)
            if self.state.week_id == week_id:
                command = UpsertInstance(instance)
            else:
                command = ReplaceCurrentWeek(week_id, week_goals)
            result = await self.state_store.commit_after(
                lambda: self._store.save_current_week(self.user_id, week_id, week_goals),
                [command],
            )
        ErrorHandler.raise_for_result(result, _persistence_error("save_current_week"))

    async def _after_completion_change(self, before: WeeklyGoalInstance, after: WeeklyGoalInstance) -> None:
        """
        Awards on false -> true, then propagate to the parent goal.

        A monthly goal records every count change in its month log; the
        others only react when `completed` flips.
        """
        await self._publish(
            DomainEventType.WEEKLY_GOAL_TOGGLED,
            goal_id=after.goal_id or after.id,
            instance_id=after.id,
            week_id=after.week_id,
            completed=after.completed,
        )
        changed = before.completed != after.completed
        if changed and after.completed:
            await self._award(
                ScoringSource.WEEK,
                f'Completed: "{after.title}"',
                dream_id=after.dream_id,
                week_id=after.week_id,
            )

        if after.goal_type == GoalType.CONSISTENCY and after.recurrence == Recurrence.MONTHLY:
            if after.goal_id and before.completion_count != after.completion_count:
                await self._log_month(after.goal_id, after)
            return
        if not changed:
            return

        if after.goal_type == GoalType.CONSISTENCY:
            _, goal = find_goal(self.state.dreams, after.goal_id) if after.goal_id else (None, None)
            if goal is not None:
                await self._log_week(goal.id, after.week_id, after.completed, award_week=False)
        elif after.goal_type == GoalType.DEADLINE:
            await self._set_deadline_completion(after.goal_id, after.completed)

    @returns_result("toggle_weekly_goal")
    async def toggle_weekly_goal(self, goal_id: str) -> WeeklyGoalInstance:
        """
        Flip this week's completion of a template or instance id.

        Goals that count completions per period are incremented instead.
        """
        async with self._locks.hold(self._lock_key(goal_id)):
            instance, week_id = self._resolve_instance(goal_id)
            if instance.counts_completions:
                return await self._increment(instance, week_id)

            toggled = toggle_instance(instance, self._now_iso())
            await self._save_instance(toggled, week_id)
            logger.info(
                "weekly_goal_toggled",
                goal_id=goal_id,
                instance_id=toggled.id,
                week_id=week_id,
                completed=toggled.completed,
            )
            await self._after_completion_change(instance, toggled)
        return toggled

    @returns_result("increment_goal")
    async def increment_goal(self, goal_id: str) -> WeeklyGoalInstance:
        """One more completion; rejected without a write once frequency is reached"""
        async with self._locks.hold(self._lock_key(goal_id)):
            instance, week_id = self._resolve_instance(goal_id)
            return await self._increment(instance, week_id)

    increment_monthly_goal = increment_goal

    async def _increment(self, instance: WeeklyGoalInstance, week_id: str) -> WeeklyGoalInstance:
        incremented = increment_instance(instance, self._now_iso())
        await self._save_instance(incremented, week_id)
        logger.info(
            "goal_incremented",
            instance_id=incremented.id,
            completion_count=incremented.completion_count,
            frequency=incremented.frequency,
        )
        await self._after_completion_change(instance, incremented)
        return incremented

    @returns_result("decrement_goal")
    async def decrement_goal(self, goal_id: str) -> WeeklyGoalInstance:
        async with self._locks.hold(self._lock_key(goal_id)):
            instance, week_id = self._resolve_instance(goal_id)
            decremented = decrement_instance(instance)
            await self._save_instance(decremented, week_id)
            logger.info(
                "goal_decremented",
                instance_id=decremented.id,
                completion_count=decremented.completion_count,
            )
            await self._after_completion_change(instance, decremented)
        return decremented

    @returns_result("skip_goal")
    async def skip_goal(self, goal_id: str) -> WeeklyGoalInstance:
        async with self._locks.hold(self._lock_key(goal_id)):
            instance, week_id = self._resolve_instance(goal_id)
            skipped = skip_instance(instance, self._now_iso())
            await self._save_instance(skipped, week_id)
            logger.info("goal_skipped", instance_id=skipped.id, week_id=week_id)
        return skipped

    # =========================================================================
    # Ad-hoc weekly goals and templates
    # =========================================================================

    @returns_result("add_weekly_goal")
    async def add_weekly_goal(
        self, goal: Union[WeeklyGoalInstance, WeeklyGoalTemplate]
    ) -> Union[WeeklyGoalInstance, WeeklyGoalTemplate]:
        if not goal.title.strip():
            raise GoalValidationError("title", "must not be empty")

        async with self._locks.hold(self._lock_key(goal.id)):
            if isinstance(goal, WeeklyGoalTemplate):
                async with self._writing():
                    if any(t.id == goal.id for t in self.state.templates):
                        raise GoalValidationError("id", "already exists")
                    dreams = self.state.dreams
                    templates = self.state.templates + (goal,)
                    result = await self.state_store.commit_after(
                        lambda: self._store.save_dreams(self.user_id, dreams, templates),
                        [AddTemplate(goal)],
                    )
                ErrorHandler.raise_for_result(result, _persistence_error("save_dreams"))
                await self._publish(DomainEventType.DREAMS_UPDATED, goal_id=goal.goal_id or goal.id)
            else:
                week_id = self._require_current_week(goal)
                await self._save_instance(goal, week_id)
            logger.info("weekly_goal_added", goal_id=goal.id, kind=goal.type)
        return goal

    @returns_result("update_weekly_goal")
    async def update_weekly_goal(
        self, goal: Union[WeeklyGoalInstance, WeeklyGoalTemplate]
    ) -> Union[WeeklyGoalInstance, WeeklyGoalTemplate]:
        async with self._locks.hold(self._lock_key(goal.id)):
            if isinstance(goal, WeeklyGoalTemplate):
                async with self._writing():
                    if not any(t.id == goal.id for t in self.state.templates):
                        raise GoalNotFound(goal.id)
                    dreams = self.state.dreams
                    templates = replace_template(self.state.templates, goal)
                    result = await self.state_store.commit_after(
                        lambda: self._store.save_dreams(self.user_id, dreams, templates),
                        [UpdateTemplate(goal)],
                    )
                ErrorHandler.raise_for_result(result, _persistence_error("save_dreams"))
                await self._publish(DomainEventType.DREAMS_UPDATED, goal_id=goal.goal_id or goal.id)
            else:
                week_id = self._require_current_week(goal)
                if not any(i.id == goal.id for i in self._week_goals(week_id)):
                    raise GoalNotFound(goal.id)
                await self._save_instance(goal, week_id)
            logger.info("weekly_goal_updated", goal_id=goal.id, kind=goal.type)
        return goal

    @returns_result("delete_weekly_goal")
    async def delete_weekly_goal(self, goal_id: str) -> Dict[str, Any]:
        """Delete a template (and its current-week instance) or a current-week instance"""
        async with self._locks.hold(self._lock_key(goal_id)):
            template = next((t for t in self.state.templates if t.id == goal_id), None)
            if template is not None:
                async with self._writing():
                    dreams = self.state.dreams
                    templates = tuple(t for t in self.state.templates if t.id != goal_id)
                    result = await self.state_store.commit_after(
                        lambda: self._store.save_dreams(self.user_id, dreams, templates),
                        [DeleteTemplate(goal_id)],
                    )
                ErrorHandler.raise_for_result(result, _persistence_error("save_dreams"))
                removed = await self._remove_current_instances(lambda i: i.template_id == goal_id)
                await self._publish(DomainEventType.DREAMS_UPDATED, goal_id=template.goal_id or goal_id)
                return {"template_id": goal_id, "instances_removed": removed}

            instance = next((i for i in self.state.instances if i.id == goal_id), None)
            if instance is None:
                raise GoalNotFound(goal_id)
            self._require_current_week(instance)
            removed = await self._remove_current_instances(lambda i: i.id == goal_id)
            logger.info("weekly_goal_deleted", goal_id=goal_id)
        return {"instance_id": goal_id, "instances_removed": removed}

    def _require_current_week(self, instance: WeeklyGoalInstance) -> str:
        week_id = self.current_week()
        if instance.week_id != week_id:
            raise NonCurrentWeekMutation(instance.id, instance.week_id, week_id)
        return week_id

    # =========================================================================
    # Week rollover
    # =========================================================================

    @returns_result("refresh_weeks_remaining")
    async def refresh_weeks_remaining(self) -> Dict[str, Any]:
        """Recount weeksRemaining of open deadline goals against the current week"""
        week_id = self.current_week()
        async with self._writing():
            dreams = self.state.dreams
            templates = self.state.templates
            changed: List[Goal] = []

            for dream in self.state.dreams:
                for goal in dream.goals:
                    if goal.type != GoalType.DEADLINE or goal.completed or not goal.target_date:
                        continue
                    remaining = weeks_until_date(goal.target_date, week_id)
                    if remaining == goal.weeks_remaining:
                        continue
                    updated = goal.model_copy(update={"weeks_remaining": remaining})
                    dreams = replace_goal(dreams, dream.id, updated)
                    template = find_template(templates, goal.id)
                    if template is not None:
                        templates = replace_template(templates, sync_template(template, updated))
                    changed.append(updated)

            if not changed:
                return {"week_id": week_id, "updated": 0}

            changed_ids = {g.id for g in changed}
            commands: List = [
                UpdateDream(d) for d in dreams if any(g.id in changed_ids for g in d.goals)
            ] + [
                UpdateTemplate(t) for t in templates if t.goal_id in changed_ids
            ]
            result = await self.state_store.commit_after(
                lambda: self._store.save_dreams(self.user_id, dreams, templates),
                commands,
            )
        ErrorHandler.raise_for_result(result, _persistence_error("save_dreams"))
        logger.info("weeks_remaining_refreshed", week_id=week_id, updated=len(changed))
        await self._publish(DomainEventType.DREAMS_UPDATED)
        return {"week_id": week_id, "updated": len(changed)}
