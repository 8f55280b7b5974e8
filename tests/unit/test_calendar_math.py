"""
CALENDAR MATH TESTS

ISO week arithmetic, month <-> week conversion and deadline countdowns.
"""
import re
from datetime import date, datetime, timedelta, timezone

import pytest

from dreamgoals.calendar_math import (
    add_months,
    add_weeks,
    all_weeks_for_year,
    current_iso_week,
    date_to_weeks,
    format_iso_week,
    group_week_ids_by_year,
    is_deadline_active,
    is_month_in_tracking_period,
    is_valid_week_id,
    iso_week,
    month_id_from_week,
    months_elapsed,
    months_remaining,
    months_to_weeks,
    next_n_weeks,
    parse_iso_week,
    to_date,
    tracking_month_ids,
    week_range,
    weeks_between,
    weeks_until_date,
)


class TestIsoWeeks:
    """Week ids follow ISO-8601"""

    def test_iso_week_of_midweek_date(self):
        assert iso_week(date(2025, 10, 22)) == "2025-W43"

    def test_iso_week_year_boundaries(self):
        """
        SCENARIO: dates around new year

        EXPECTED: the ISO year, not the calendar year, is used
        """
        assert iso_week(date(2024, 12, 30)) == "2025-W01"
        assert iso_week(date(2021, 1, 3)) == "2020-W53"

    def test_current_iso_week_format(self):
        assert re.match(r"^\d{4}-W\d{2}$", current_iso_week())

    def test_current_iso_week_stable_within_week(self):
        monday = datetime(2025, 10, 20, 0, 0, tzinfo=timezone.utc)
        weeks = {current_iso_week(monday + timedelta(hours=h)) for h in range(0, 7 * 24, 5)}
        assert weeks == {"2025-W43"}

    def test_accepts_iso_strings(self):
        assert to_date("2025-12-19T10:00:00Z") == date(2025, 12, 19)
        assert iso_week("2025-10-22") == "2025-W43"

    def test_parse_rejects_malformed_ids(self):
        with pytest.raises(ValueError):
            parse_iso_week("2025-43")

    def test_week_53_only_in_long_years(self):
        assert is_valid_week_id("2020-W53")
        assert not is_valid_week_id("2025-W53")
        assert not is_valid_week_id("garbage")

    def test_week_range_is_monday_to_sunday(self):
        assert week_range("2025-W43") == (date(2025, 10, 20), date(2025, 10, 26))

    def test_add_weeks_crosses_year(self):
        assert add_weeks("2025-W52", 1) == "2026-W01"
        assert add_weeks("2026-W01", -1) == "2025-W52"

    def test_weeks_between_is_signed(self):
        assert weeks_between("2025-W43", "2025-W47") == 4
        assert weeks_between("2025-W47", "2025-W43") == -4

    def test_next_n_weeks(self):
        assert next_n_weeks("2025-W52", 3) == ["2025-W52", "2026-W01", "2026-W02"]
        assert next_n_weeks("2025-W52", 0) == []

    def test_all_weeks_for_year(self):
        assert len(all_weeks_for_year(2020)) == 53
        assert len(all_weeks_for_year(2025)) == 52
        assert all_weeks_for_year(2025)[0] == "2025-W01"

    def test_group_week_ids_by_year(self):
        grouped = group_week_ids_by_year(["2025-W52", "2026-W01", "2025-W01"])
        assert grouped == {2025: ["2025-W52", "2025-W01"], 2026: ["2026-W01"]}

    def test_format_iso_week(self):
        assert format_iso_week("2025-W41") == "Week 41, 2025"


class TestDurations:
    """Month/week conversion and deadlines"""

    def test_six_months_is_26_weeks(self):
        assert months_to_weeks(6) == 26

    def test_partial_weeks_round_up(self):
        assert months_to_weeks(1) == 5
        assert months_to_weeks(3) == 13

    def test_non_positive_months(self):
        assert months_to_weeks(0) == 0
        assert months_to_weeks(-2) == 0

    def test_months_to_weeks_is_monotonic(self):
        values = [months_to_weeks(m) for m in range(0, 37)]
        assert values == sorted(values)

    def test_deadline_four_weeks_out(self):
        """
        SCENARIO: target date is the Thursday four ISO weeks after 2025-W43

        EXPECTED: 4 weeks by both counts
        """
        assert date_to_weeks("2025-11-20", "2025-W43") == 4
        assert weeks_until_date("2025-11-20", "2025-W43") == 4

    def test_deadline_this_week(self):
        assert weeks_until_date("2025-10-26", "2025-W43") == 0
        assert is_deadline_active("2025-10-26", "2025-W43")

    def test_past_deadline(self):
        assert weeks_until_date("2025-10-01", "2025-W43") == -1
        assert date_to_weeks("2025-10-01", "2025-W43") == 0
        assert not is_deadline_active("2025-10-01", "2025-W43")


class TestMonths:
    """Monthly goal helpers"""

    def test_month_of_week_uses_monday(self):
        assert month_id_from_week("2025-W44") == "2025-10"

    def test_months_elapsed_counts_start_month(self):
        assert months_elapsed("2025-10-05", "2025-10") == 1
        assert months_elapsed("2025-10-05", "2025-12") == 3

    def test_months_remaining(self):
        assert months_remaining("2025-10-05", 6, "2025-12") == 4
        assert months_remaining("2025-10-05", 2, "2026-06") == 0

    def test_tracking_period(self):
        assert is_month_in_tracking_period("2026-03", "2025-10-05", 6)
        assert not is_month_in_tracking_period("2026-04", "2025-10-05", 6)
        assert not is_month_in_tracking_period("2025-09", "2025-10-05", 6)

    def test_tracking_month_ids_cross_year(self):
        assert tracking_month_ids("2025-11-01", 3) == ["2025-11", "2025-12", "2026-01"]

    def test_add_months_crosses_year(self):
        assert add_months("2025-12", 1) == "2026-01"
        assert add_months("2025-10", 0) == "2025-10"
