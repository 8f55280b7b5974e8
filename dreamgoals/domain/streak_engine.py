"""
Streak Engine - consistency goal progress
=========================================
A streak is the number of consecutive completed ISO weeks counted forward
from the week that contains the goal's start date. The first week that is
missing from the week log, or logged as not completed, ends the streak.

Monthly goals count months instead: a month counts once its completions
reach the goal's frequency.
"""
from dataclasses import dataclass
from typing import Iterator, Mapping, Optional

from dreamgoals.calendar_math import (
    DateLike,
    add_months,
    add_weeks,
    iso_week,
    month_id,
    tracking_month_ids,
    weeks_between,
)
from dreamgoals.schemas import Goal


@dataclass(frozen=True)
class StreakProgress:
    streak: int
    target_weeks: Optional[int]
    reached: bool

    @property
    def percent(self) -> int:
        if not self.target_weeks:
            return 0
        return min(100, round(self.streak * 100 / self.target_weeks))


def compute_streak(
    week_log: Mapping[str, bool],
    start_date: DateLike,
    until_week: Optional[str] = None,
) -> int:
    """
    Count consecutive completed weeks starting at start_date's ISO week.

    Weeks after until_week (usually the current week) are never counted.
    """
    if not week_log or start_date is None:
        return 0

    week = iso_week(start_date)
    streak = 0
    while week_log.get(week) is True:
        if until_week is not None and weeks_between(until_week, week) > 0:
            break
        streak += 1
        week = add_weeks(week, 1)
    return streak


def is_target_reached(streak: int, target_weeks: Optional[int]) -> bool:
    return bool(target_weeks) and streak >= target_weeks


def consistency_progress(
    goal: Goal,
    week_log: Optional[Mapping[str, bool]] = None,
    until_week: Optional[str] = None,
) -> StreakProgress:
    """Streak of a consistency goal measured against its targetWeeks."""
    log = goal.week_log if week_log is None else week_log
    start = goal.start_date or goal.created_at
    streak = compute_streak(log, start, until_week) if start else 0
    return StreakProgress(
        streak=streak,
        target_weeks=goal.target_weeks,
        reached=is_target_reached(streak, goal.target_weeks),
    )


# =============================================================================
# Monthly goals
# =============================================================================

@dataclass(frozen=True)
class MonthProgress:
    streak: int
    target_months: Optional[int]
    reached: bool


def _open_months(start_date: DateLike) -> Iterator[str]:
    month = month_id(start_date)
    while True:
        yield month
        month = add_months(month, 1)


def compute_month_streak(
    month_log: Mapping[str, int],
    start_date: DateLike,
    frequency: Optional[int],
    target_months: Optional[int] = None,
    until_month: Optional[str] = None,
) -> int:
    """
    Count consecutive months, from start_date's month, whose completions
    reached `frequency`. Months after until_month are never counted.
    """
    if not month_log or start_date is None:
        return 0

    needed = max(1, frequency or 1)
    months = tracking_month_ids(start_date, target_months) if target_months else _open_months(start_date)
    streak = 0
    for month in months:
        # YYYY-MM ids order as strings
        if until_month is not None and month > until_month:
            break
        if month_log.get(month, 0) < needed:
            break
        streak += 1
    return streak


def monthly_progress(goal: Goal, until_month: Optional[str] = None) -> MonthProgress:
    start = goal.start_date or goal.created_at
    streak = compute_month_streak(
        goal.month_log, start, goal.frequency, goal.target_months, until_month
    ) if start else 0
    return MonthProgress(
        streak=streak,
        target_months=goal.target_months,
        reached=is_target_reached(streak, goal.target_months),
    )
