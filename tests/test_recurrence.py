"""Tests for the recurrence calculator."""

from datetime import date, datetime

import pytest

from src.models.recurring import Frequency, RecurringTemplate
from src.scheduling.recurrence import (
    add_months,
    compute_next_due_date,
    next_due_after_processing,
    parse_anchor_date,
    project_next_due,
    snap_to_weekday,
    sunday_based_weekday,
    with_projection,
)


class TestHelpers:
    """Tests for the date helpers."""

    def test_parse_anchor_date_formats(self):
        assert parse_anchor_date("2024-01-15") == date(2024, 1, 15)
        assert parse_anchor_date("01/15/2024") == date(2024, 1, 15)
        assert parse_anchor_date("2024/01/15") == date(2024, 1, 15)
        assert parse_anchor_date("2024-01-15T08:30:00") == date(2024, 1, 15)
        assert parse_anchor_date(datetime(2024, 1, 15, 8, 30)) == date(2024, 1, 15)

    def test_parse_anchor_date_rejects_garbage(self):
        assert parse_anchor_date("not a date") is None
        assert parse_anchor_date("") is None
        assert parse_anchor_date(None) is None
        assert parse_anchor_date("2024-02-30") is None

    def test_add_months_clamps_short_months(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
        assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 15)

    def test_weekdays_are_sunday_based(self):
        assert sunday_based_weekday(date(2024, 1, 7)) == 0  # Sunday
        assert sunday_based_weekday(date(2024, 1, 8)) == 1  # Monday
        assert sunday_based_weekday(date(2024, 1, 13)) == 6  # Saturday

    def test_snap_keeps_matching_day(self):
        assert snap_to_weekday(date(2024, 1, 8), 1) == date(2024, 1, 8)
        assert snap_to_weekday(date(2024, 1, 9), 1) == date(2024, 1, 15)


class TestComputeNextDueDate:
    """Tests for compute_next_due_date."""

    @pytest.mark.parametrize(
        "anchor, expected",
        [
            (date(2023, 1, 31), date(2023, 2, 28)),
            (date(2024, 1, 31), date(2024, 2, 29)),
        ],
    )
    def test_day_of_month_clamps_into_february(self, anchor, expected):
        """Day 31 lands on the last day of February, leap or not."""
        result = compute_next_due_date(
            Frequency.MONTHLY,
            start_date=date(2022, 1, 31),
            day_of_month=31,
            last_processed=anchor,
            today=anchor,
        )
        assert result == expected

    def test_clamped_month_recovers_full_day(self):
        result = compute_next_due_date(
            Frequency.MONTHLY,
            start_date=date(2024, 1, 31),
            day_of_month=31,
            last_processed=date(2024, 2, 29),
            today=date(2024, 2, 29),
        )
        assert result == date(2024, 3, 31)

    def test_weekly_snaps_onto_day_of_week(self):
        """Monday template evaluated on a Wednesday snaps to the next Monday."""
        result = compute_next_due_date(
            "weekly",
            start_date=date(2024, 1, 1),
            day_of_week=1,
            today=date(2024, 1, 10),
        )
        assert result == date(2024, 1, 22)

    def test_behind_schedule_collapses_to_today(self):
        """A template that fell behind is rescheduled from today."""
        result = compute_next_due_date(
            Frequency.MONTHLY,
            start_date=date(2024, 1, 15),
            day_of_month=15,
            last_processed=date(2024, 2, 15),
            today=date(2024, 3, 20),
        )
        assert result == date(2024, 4, 15)

    def test_future_anchor_is_kept(self):
        result = compute_next_due_date(
            Frequency.MONTHLY,
            start_date=date(2024, 6, 1),
            day_of_month=1,
            today=date(2024, 1, 1),
        )
        assert result == date(2024, 7, 1)

    def test_daily(self):
        result = compute_next_due_date(
            Frequency.DAILY,
            start_date=date(2024, 1, 1),
            last_processed=date(2024, 1, 5),
            today=date(2024, 1, 5),
        )
        assert result == date(2024, 1, 6)

    def test_biweekly_on_matching_day(self):
        """Zero snap: the advanced date already sits on the weekday."""
        result = compute_next_due_date(
            Frequency.BIWEEKLY,
            start_date=date(2024, 1, 5),
            day_of_week=5,
            last_processed=date(2024, 1, 5),
            today=date(2024, 1, 5),
        )
        assert result == date(2024, 1, 19)

    def test_quarterly_and_yearly(self):
        assert compute_next_due_date(
            Frequency.QUARTERLY,
            start_date=date(2024, 1, 10),
            day_of_month=10,
            today=date(2024, 1, 10),
        ) == date(2024, 4, 10)
        assert compute_next_due_date(
            Frequency.YEARLY,
            start_date=date(2024, 2, 29),
            day_of_month=29,
            today=date(2024, 2, 29),
        ) == date(2025, 2, 28)

    def test_string_inputs_are_accepted(self):
        result = compute_next_due_date(
            "Monthly",
            start_date="01/15/2024",
            day_of_month="15",
            today=date(2024, 1, 15),
        )
        assert result == date(2024, 2, 15)

    @pytest.mark.parametrize(
        "frequency, fields",
        [
            (Frequency.WEEKLY, {}),
            (Frequency.BIWEEKLY, {"day_of_week": 7}),
            (Frequency.MONTHLY, {}),
            (Frequency.QUARTERLY, {"day_of_month": 0}),
            (Frequency.YEARLY, {"day_of_month": 32}),
        ],
    )
    def test_missing_or_invalid_anchor_field_cannot_schedule(self, frequency, fields):
        result = compute_next_due_date(
            frequency, start_date=date(2024, 1, 1), today=date(2024, 1, 1), **fields
        )
        assert result is None

    def test_unparseable_anchor_cannot_schedule(self):
        assert compute_next_due_date(
            Frequency.DAILY, start_date="not a date", today=date(2024, 1, 1)
        ) is None

    def test_unparseable_last_processed_falls_back_to_start(self):
        result = compute_next_due_date(
            Frequency.DAILY,
            start_date=date(2024, 1, 1),
            last_processed="garbage",
            today=date(2024, 1, 1),
        )
        assert result == date(2024, 1, 2)

    def test_unknown_frequency_defaults_to_monthly(self):
        assert compute_next_due_date(
            "fortnightly", start_date=date(2024, 1, 15), today=date(2024, 1, 15)
        ) == date(2024, 2, 15)
        assert compute_next_due_date(
            "fortnightly",
            start_date=date(2024, 1, 15),
            day_of_month=10,
            today=date(2024, 1, 15),
        ) == date(2024, 2, 10)


class TestProjection:
    """Tests for next_due as a projection of the schedule fields."""

    def test_never_processed_is_one_cycle_after_start(self, template_factory):
        template = template_factory(start_date=date(2024, 1, 15), day_of_month=15)
        assert project_next_due(template) == date(2024, 2, 15)

    def test_projection_follows_last_processed(self, template_factory):
        template = template_factory(
            start_date=date(2024, 1, 15),
            day_of_month=15,
            last_processed=date(2024, 3, 15),
        )
        assert project_next_due(template) == date(2024, 4, 15)

    def test_projection_ignores_the_clock(self, template_factory):
        """Same fields, same answer, whatever day it is."""
        template = template_factory(frequency=Frequency.DAILY, day_of_month=None)
        assert project_next_due(template) == date(2024, 1, 2)

    def test_stale_cached_value_is_replaced(self, template_factory):
        template = template_factory(next_due=date(2030, 1, 1))
        assert with_projection(template).next_due == date(2024, 2, 1)

    def test_consistent_value_is_kept(self, template_factory):
        template = template_factory(next_due=date(2024, 2, 1))
        assert with_projection(template) is template

    def test_no_anchor_projects_none(self):
        assert project_next_due(RecurringTemplate(frequency=Frequency.DAILY)) is None

    def test_next_due_after_processing(self, template_factory):
        template = template_factory(day_of_month=1)
        assert next_due_after_processing(template, date(2024, 3, 10)) == date(2024, 4, 1)
