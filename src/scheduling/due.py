"""
Due Detection

"Due" is never stored. It is a predicate recomputed on every call from
{active, end_date, next_due, today}, with next_due revalidated against the
template's schedule fields first.
"""

from datetime import date, datetime
from typing import Iterable

from src.models.recurring import RecurringTemplate
from src.scheduling.recurrence import with_projection


def _as_date(value) -> date:
    # Date-only comparison on both sides
    return value.date() if isinstance(value, datetime) else value


def is_due(template: RecurringTemplate, today: date) -> bool:
    """
    Check a single template.

    Uses template.next_due as given; call with_projection() first when the
    value comes from storage.
    """
    today = _as_date(today)
    if not template.active:
        return False
    if template.is_ended(today):
        return False
    if template.next_due is None:
        return False
    return _as_date(template.next_due) <= today


def select_due(
    templates: Iterable[RecurringTemplate],
    today: date,
) -> list[RecurringTemplate]:
    """
    Select active, unexpired templates whose next due date has arrived.

    Returned templates carry a freshly projected next_due.
    Ordering of the result is unspecified.
    """
    due = []
    for template in templates:
        projected = with_projection(template)
        if is_due(projected, today):
            due.append(projected)
    return due
