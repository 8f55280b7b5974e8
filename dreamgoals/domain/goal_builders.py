"""
Goal builders - pure construction of goals, templates and instances
===================================================================
Every function returns new frozen documents; none of them touches
persistence or the clock (callers pass `now` and the current week).
"""
from typing import Iterable, Optional, Sequence, Tuple

from dreamgoals.calendar_math import (
    date_to_weeks,
    is_deadline_active,
    is_month_in_tracking_period,
    is_valid_week_id,
    iso_week,
    month_id_from_week,
    months_to_weeks,
    to_date,
    weeks_between,
    weeks_until_date,
)
from dreamgoals.config import DEFAULT_FREQUENCY
from dreamgoals.exceptions import CompletionLimitReached, GoalValidationError, InvalidGoalState
from dreamgoals.schemas import (
    Dream,
    DurationType,
    Goal,
    GoalSpec,
    GoalType,
    Recurrence,
    WeeklyGoalInstance,
    WeeklyGoalTemplate,
)


# =============================================================================
# Goals
# =============================================================================

def validate_goal_spec(spec: GoalSpec, current_week: str) -> None:
    if not spec.title or not spec.title.strip():
        raise GoalValidationError("title", "must not be empty")

    if spec.type == GoalType.DEADLINE:
        if not spec.target_date:
            raise GoalValidationError("targetDate", "is required for deadline goals")
        try:
            to_date(spec.target_date)
        except ValueError:
            raise GoalValidationError("targetDate", "is not an ISO date")
        if weeks_until_date(spec.target_date, current_week) < 0:
            raise GoalValidationError("targetDate", "is in the past")

    if spec.type == GoalType.CONSISTENCY and spec.target_date:
        raise GoalValidationError("targetDate", "only applies to deadline goals")


def build_goal(spec: GoalSpec, goal_id: str, current_week: str, now: str) -> Goal:
    """Turn validated user input into a draft Goal with derived week counts."""
    validate_goal_spec(spec, current_week)

    fields = {
        "id": spec.id or goal_id,
        "title": spec.title.strip(),
        "description": spec.description,
        "type": spec.type,
        "start_date": spec.start_date or now[:10],
        # draft until the lifecycle manager activates it
        "active": False,
        "completed": False,
        "created_at": now,
    }

    if spec.type == GoalType.DEADLINE:
        weeks = date_to_weeks(spec.target_date, current_week)
        fields.update(
            target_date=spec.target_date,
            target_weeks=weeks,
            weeks_remaining=weeks,
        )
    else:
        recurrence = spec.recurrence or Recurrence.WEEKLY
        if recurrence == Recurrence.MONTHLY and spec.target_months:
            target_weeks = months_to_weeks(spec.target_months)
        else:
            target_weeks = spec.target_weeks
        fields.update(
            recurrence=recurrence,
            target_weeks=target_weeks,
            target_months=spec.target_months if recurrence == Recurrence.MONTHLY else None,
            frequency=spec.frequency or DEFAULT_FREQUENCY[recurrence.value],
            weeks_remaining=target_weeks,
        )

    return Goal(**fields)


def replace_goal(dreams: Sequence[Dream], dream_id: str, goal: Goal) -> Tuple[Dream, ...]:
    return tuple(
        d.model_copy(update={"goals": tuple(goal if g.id == goal.id else g for g in d.goals)})
        if d.id == dream_id else d
        for d in dreams
    )


def append_goal(dreams: Sequence[Dream], dream_id: str, goal: Goal) -> Tuple[Dream, ...]:
    return tuple(
        d.model_copy(update={"goals": d.goals + (goal,)}) if d.id == dream_id else d
        for d in dreams
    )


def remove_goal(dreams: Sequence[Dream], dream_id: str, goal_id: str) -> Tuple[Dream, ...]:
    return tuple(
        d.model_copy(update={"goals": tuple(g for g in d.goals if g.id != goal_id)})
        if d.id == dream_id else d
        for d in dreams
    )


def find_goal(dreams: Iterable[Dream], goal_id: str) -> Tuple[Optional[Dream], Optional[Goal]]:
    for dream in dreams:
        goal = dream.find_goal(goal_id)
        if goal is not None:
            return dream, goal
    return None, None


# =============================================================================
# Templates
# =============================================================================

def _duration(goal: Goal) -> DurationType:
    if goal.type == GoalType.DEADLINE:
        return DurationType.MILESTONE
    return DurationType.WEEKS if goal.target_weeks else DurationType.UNLIMITED


def build_template(goal: Goal, dream: Dream, now: str) -> WeeklyGoalTemplate:
    return WeeklyGoalTemplate(
        id=f"template_{goal.id}",
        goal_id=goal.id,
        dream_id=dream.id,
        dream_title=dream.title,
        dream_category=dream.category,
        title=goal.title,
        description=goal.description,
        goal_type=goal.type,
        recurrence=goal.recurrence or Recurrence.WEEKLY,
        target_weeks=goal.target_weeks,
        target_months=goal.target_months,
        frequency=goal.frequency,
        start_date=goal.start_date,
        target_date=goal.target_date,
        weeks_remaining=goal.weeks_remaining,
        duration_type=_duration(goal),
        duration_weeks=goal.target_weeks,
        active=goal.active,
        completed=goal.completed,
        completed_at=goal.completed_at,
        created_at=now,
    )


def sync_template(template: WeeklyGoalTemplate, goal: Goal) -> WeeklyGoalTemplate:
    """Mirror the goal's scheduling and lifecycle fields onto its template."""
    return template.model_copy(update={
        "goal_id": goal.id,
        "title": goal.title,
        "description": goal.description,
        "recurrence": goal.recurrence or template.recurrence,
        "target_weeks": goal.target_weeks,
        "target_months": goal.target_months,
        "frequency": goal.frequency,
        "start_date": goal.start_date,
        "target_date": goal.target_date,
        "weeks_remaining": goal.weeks_remaining,
        "duration_type": _duration(goal),
        "duration_weeks": goal.target_weeks,
        "active": goal.active,
        "completed": goal.completed,
        "completed_at": goal.completed_at,
    })


def find_template(templates: Iterable[WeeklyGoalTemplate], goal_id: str) -> Optional[WeeklyGoalTemplate]:
    return next((t for t in templates if t.links_to(goal_id)), None)


def replace_template(
    templates: Sequence[WeeklyGoalTemplate],
    updated: WeeklyGoalTemplate,
) -> Tuple[WeeklyGoalTemplate, ...]:
    """Swap in `updated`, matched by template id, then by its goal link."""
    if any(t.id == updated.id for t in templates):
        return tuple(updated if t.id == updated.id else t for t in templates)
    link = updated.goal_id or updated.id
    return tuple(updated if t.links_to(link) else t for t in templates)


def is_template_active_for_week(template: WeeklyGoalTemplate, week_id: str) -> bool:
    if not template.active or template.completed:
        return False
    if template.goal_type == GoalType.DEADLINE and template.target_date:
        return is_deadline_active(template.target_date, week_id)
    if template.start_date:
        elapsed = weeks_between(iso_week(template.start_date), week_id)
        if elapsed < 0:
            return False
        if template.recurrence == Recurrence.MONTHLY and template.target_months:
            return is_month_in_tracking_period(
                month_id_from_week(week_id), template.start_date, template.target_months
            )
        if template.duration_type == DurationType.WEEKS and template.duration_weeks:
            return elapsed < template.duration_weeks
    return True


# =============================================================================
# Instances
# =============================================================================

def instance_id(template_id: str, week_id: str) -> str:
    return f"{template_id}_{week_id}"


def build_instance(
    template: WeeklyGoalTemplate,
    week_id: str,
    now: str,
    month_count: int = 0,
    month_dates: Tuple[str, ...] = (),
) -> WeeklyGoalInstance:
    """
    This week's instance of a template.

    A monthly template starts from the completions already counted in the
    week's month (`month_count`), so the frequency limit holds per month.
    """
    if not is_valid_week_id(week_id):
        raise GoalValidationError("weekId", "is not a valid ISO week")
    monthly = {}
    if template.recurrence == Recurrence.MONTHLY:
        completed = month_count >= (template.frequency or 1)
        monthly = {
            "month_id": month_id_from_week(week_id),
            "completion_count": month_count,
            "completion_dates": tuple(month_dates),
            "completed": completed,
            "completed_at": month_dates[-1] if completed and month_dates else None,
        }
    return WeeklyGoalInstance(
        id=instance_id(template.id, week_id),
        template_id=template.id,
        goal_id=template.goal_id or template.id,
        dream_id=template.dream_id,
        dream_title=template.dream_title,
        dream_category=template.dream_category,
        title=template.title,
        description=template.description,
        goal_type=template.goal_type,
        recurrence=template.recurrence,
        frequency=template.frequency,
        target_weeks=template.target_weeks,
        target_months=template.target_months,
        target_date=template.target_date,
        weeks_remaining=template.weeks_remaining,
        week_id=week_id,
        created_at=now,
        **monthly,
    )


def toggle_instance(instance: WeeklyGoalInstance, now: str) -> WeeklyGoalInstance:
    completed = not instance.completed
    return instance.model_copy(update={
        "completed": completed,
        "completed_at": now if completed else None,
    })


def increment_instance(instance: WeeklyGoalInstance, now: str) -> WeeklyGoalInstance:
    frequency = instance.frequency or 1
    if instance.completion_count >= frequency:
        raise CompletionLimitReached(instance.id, frequency)
    count = instance.completion_count + 1
    completed = count >= frequency
    return instance.model_copy(update={
        "completion_count": count,
        "completion_dates": instance.completion_dates + (now,),
        "completed": completed,
        "completed_at": now if completed else None,
    })


def decrement_instance(instance: WeeklyGoalInstance) -> WeeklyGoalInstance:
    if instance.completion_count <= 0:
        raise InvalidGoalState(instance.id, "no_completions", ["has_completions"])
    count = instance.completion_count - 1
    completed = count >= (instance.frequency or 1)
    return instance.model_copy(update={
        "completion_count": count,
        "completion_dates": instance.completion_dates[:-1],
        "completed": completed,
        "completed_at": instance.completed_at if completed else None,
    })


def skip_instance(instance: WeeklyGoalInstance, now: str) -> WeeklyGoalInstance:
    if instance.template_id is None:
        raise InvalidGoalState(instance.id, "ad_hoc", ["template_backed"])
    return instance.model_copy(update={"skipped": True, "skipped_at": now})


def upsert_instance(
    instances: Sequence[WeeklyGoalInstance],
    instance: WeeklyGoalInstance,
) -> Tuple[WeeklyGoalInstance, ...]:
    if any(i.id == instance.id for i in instances):
        return tuple(instance if i.id == instance.id else i for i in instances)
    return tuple(instances) + (instance,)
