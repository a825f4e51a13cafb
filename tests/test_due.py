"""Tests for due detection."""

from datetime import date, datetime

from src.models.recurring import Frequency
from src.scheduling.due import is_due, select_due


TODAY = date(2024, 3, 10)


class TestIsDue:
    """Tests for the single-template predicate."""

    def test_due_when_next_due_reached(self, template_factory):
        template = template_factory(next_due=date(2024, 3, 10))
        assert is_due(template, TODAY)

    def test_not_due_before_next_due(self, template_factory):
        template = template_factory(next_due=date(2024, 3, 11))
        assert not is_due(template, TODAY)

    def test_undefined_next_due_is_never_due(self, template_factory):
        template = template_factory(next_due=None)
        assert not is_due(template, TODAY)

    def test_compares_dates_only(self, template_factory):
        template = template_factory(next_due=date(2024, 3, 10))
        assert is_due(template, datetime(2024, 3, 10, 0, 0, 1))


class TestSelectDue:
    """Tests for select_due."""

    def test_inactive_templates_are_excluded(self, template_factory):
        """Past due but inactive: never selected."""
        template = template_factory(active=False)
        assert select_due([template], TODAY) == []

    def test_ended_templates_are_excluded(self, template_factory):
        """Active and past due, but ended: never selected."""
        template = template_factory(end_date=date(2024, 3, 9))
        assert select_due([template], TODAY) == []

    def test_end_date_today_is_still_due(self, template_factory):
        template = template_factory(end_date=TODAY)
        assert len(select_due([template], TODAY)) == 1

    def test_selects_only_due_templates(self, template_factory):
        due = template_factory(description="Rent")
        not_yet = template_factory(
            description="Insurance",
            start_date=date(2024, 3, 5),
            day_of_month=5,
        )
        selected = select_due([due, not_yet], TODAY)
        assert [t.description for t in selected] == ["Rent"]

    def test_stale_next_due_is_revalidated(self, template_factory):
        """A cached date in the past does not make a template due."""
        template = template_factory(
            start_date=date(2024, 3, 5),
            day_of_month=5,
            next_due=date(2024, 1, 1),
        )
        assert select_due([template], TODAY) == []

    def test_unresolvable_schedule_is_never_due(self, template_factory):
        template = template_factory(frequency=Frequency.WEEKLY, day_of_month=None)
        assert select_due([template], TODAY) == []

    def test_returned_templates_carry_projection(self, template_factory):
        [selected] = select_due([template_factory()], TODAY)
        assert selected.next_due == date(2024, 2, 1)
