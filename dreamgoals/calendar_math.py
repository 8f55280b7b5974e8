"""
Calendar math for weekly/monthly goal tracking

Pure functions over ISO-8601 weeks ("2025-W43": Monday-start weeks, week 1
is the week holding the year's first Thursday) and calendar months
("2025-11"). Nothing here reads the clock except current_iso_week() when it
is called without an explicit moment; callers pass the reference week so
the functions stay deterministic.
"""
import math
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple, Union

from dreamgoals.config import WEEKS_PER_MONTH

WEEK_ID_RE = re.compile(r"^(\d{4})-W(\d{2})$")
MONTH_ID_RE = re.compile(r"^(\d{4})-(\d{2})$")

DateLike = Union[date, datetime, str]

_WEEKS_PER_MONTH = Decimal(WEEKS_PER_MONTH)


def to_date(value: DateLike) -> date:
    """
    Accept a date, a datetime or an ISO string ("2025-12-19",
    "2025-12-19T10:00:00Z") and return the calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text).date()


# =============================================================================
# ISO weeks
# =============================================================================

def iso_week(value: DateLike) -> str:
    year, week, _ = to_date(value).isocalendar()
    return f"{year}-W{week:02d}"


def current_iso_week(now: datetime | None = None) -> str:
    """ISO week of `now` (UTC wall clock when omitted)."""
    moment = now or datetime.now(timezone.utc)
    return iso_week(moment)


def parse_iso_week(week_id: str) -> Tuple[int, int]:
    match = WEEK_ID_RE.match(week_id or "")
    if not match:
        raise ValueError(f"Invalid ISO week id: {week_id!r}")
    return int(match.group(1)), int(match.group(2))


def is_valid_week_id(week_id: str) -> bool:
    try:
        week_start(week_id)
    except ValueError:
        return False
    return True


def week_start(week_id: str) -> date:
    """Monday of the given ISO week."""
    year, week = parse_iso_week(week_id)
    return date.fromisocalendar(year, week, 1)


def week_range(week_id: str) -> Tuple[date, date]:
    start = week_start(week_id)
    return start, start + timedelta(days=6)


def add_weeks(week_id: str, weeks: int) -> str:
    return iso_week(week_start(week_id) + timedelta(weeks=weeks))


def weeks_between(start_week: str, end_week: str) -> int:
    """Signed number of weeks from start_week to end_week."""
    return (week_start(end_week) - week_start(start_week)).days // 7


def compare_weeks(a: str, b: str) -> int:
    diff = weeks_between(b, a)
    return (diff > 0) - (diff < 0)


def next_n_weeks(start_week: str, count: int) -> List[str]:
    """start_week followed by the next count-1 weeks."""
    return [add_weeks(start_week, i) for i in range(max(0, count))]


def all_weeks_for_year(year: int) -> List[str]:
    # Dec 28 always falls in the last ISO week of its year
    last_week = date(year, 12, 28).isocalendar()[1]
    return [f"{year}-W{w:02d}" for w in range(1, last_week + 1)]


def group_week_ids_by_year(week_ids: Iterable[str]) -> Dict[int, List[str]]:
    grouped: Dict[int, List[str]] = {}
    for week_id in week_ids:
        year, _ = parse_iso_week(week_id)
        grouped.setdefault(year, []).append(week_id)
    return grouped


def format_iso_week(week_id: str) -> str:
    year, week = parse_iso_week(week_id)
    return f"Week {week}, {year}"


# =============================================================================
# Durations
# =============================================================================

def months_to_weeks(months: float) -> int:
    """
    Month count -> week count for unified duration tracking.

    Rounded up so N months never under-counts: months_to_weeks(6) == 26.
    """
    if months is None or months <= 0:
        return 0
    return math.ceil(Decimal(str(months)) * _WEEKS_PER_MONTH)


def weeks_until_date(target_date: DateLike, reference_week: str) -> int:
    """
    Whole ISO weeks from reference_week to the week containing target_date.

    Returns -1 once that week is in the past (deadline missed).
    """
    diff = weeks_between(reference_week, iso_week(target_date))
    return -1 if diff < 0 else diff


def date_to_weeks(target_date: DateLike, reference_week: str) -> int:
    """Same count as weeks_until_date, never negative."""
    return max(0, weeks_until_date(target_date, reference_week))


def is_deadline_active(target_date: DateLike, reference_week: str) -> bool:
    return weeks_until_date(target_date, reference_week) >= 0


# =============================================================================
# Months (monthly goals)
# =============================================================================

def month_id(value: DateLike) -> str:
    d = to_date(value)
    return f"{d.year}-{d.month:02d}"


def parse_month_id(value: str) -> Tuple[int, int]:
    match = MONTH_ID_RE.match(value or "")
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValueError(f"Invalid month id: {value!r}")
    return int(match.group(1)), int(match.group(2))


def month_id_from_week(week_id: str) -> str:
    """Month of the week's Monday."""
    return month_id(week_start(week_id))


def _month_index(value: str) -> int:
    year, month = parse_month_id(value)
    return year * 12 + (month - 1)


def months_elapsed(start_date: DateLike, current_month_id: str) -> int:
    """1-based: the start month itself is month 1."""
    return _month_index(current_month_id) - _month_index(month_id(start_date)) + 1


def months_remaining(start_date: DateLike, target_months: int, current_month_id: str) -> int:
    return max(0, target_months - months_elapsed(start_date, current_month_id) + 1)


def is_month_in_tracking_period(check_month_id: str, start_date: DateLike, target_months: int) -> bool:
    offset = _month_index(check_month_id) - _month_index(month_id(start_date))
    return 0 <= offset < target_months


def tracking_month_ids(start_date: DateLike, target_months: int) -> List[str]:
    first = _month_index(month_id(start_date))
    return [f"{i // 12}-{i % 12 + 1:02d}" for i in range(first, first + max(0, target_months))]


def add_months(value: str, months: int) -> str:
    index = _month_index(value) + months
    return f"{index // 12}-{index % 12 + 1:02d}"
