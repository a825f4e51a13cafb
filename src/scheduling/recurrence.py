"""
Recurrence Calculator

Pure date arithmetic: given a frequency and its anchor fields, compute the
next due date. No I/O and no state.

RULES:
1. Anchor = last_processed if it parses, else start_date.
   No usable anchor means "cannot schedule" (None), never an exception.
2. An anchor in the past is moved to today before advancing. A template
   that fell behind is rescheduled from the present, so one run never
   produces a backlog of overdue occurrences.
3. Advance exactly one cycle, then snap onto the required weekday or
   clamp onto the required day of month.

Weekdays follow the spreadsheet convention: 0 = Sunday ... 6 = Saturday.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Union

import structlog

from src.models.recurring import Frequency, RecurringTemplate


logger = structlog.get_logger(__name__)

DateLike = Union[date, datetime, str, None]

# Accepted textual date formats, most specific first
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d")

WEEK_INTERVALS = {
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

MONTH_INTERVALS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def parse_anchor_date(value: DateLike) -> Optional[date]:
    """
    Coerce a stored anchor into a date.

    Returns None for blank or unparseable input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    # Sheets sometimes hands back a full timestamp
    text = text.split("T", 1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, months: int) -> date:
    """
    Move forward by calendar months.

    The day is clamped to the length of the target month
    (Jan 31 + 1 month = Feb 28/29), never rolled into the month after.
    """
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(d.day, days_in_month(year, month)))


def sunday_based_weekday(d: date) -> int:
    """Weekday with 0 = Sunday."""
    return d.isoweekday() % 7


def snap_to_weekday(d: date, day_of_week: int) -> date:
    """
    Move forward (0-6 days) onto day_of_week.

    A date already on day_of_week is returned unchanged.
    """
    days_to_add = (day_of_week - sunday_based_weekday(d) + 7) % 7
    return d + timedelta(days=days_to_add)


def clamp_to_day_of_month(d: date, day_of_month: int) -> date:
    """Set the day, truncating to the last day of short months."""
    return d.replace(day=min(day_of_month, days_in_month(d.year, d.month)))


def _coerce_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def compute_next_due_date(
    frequency: Union[Frequency, str, None],
    start_date: DateLike,
    day_of_month=None,
    day_of_week=None,
    last_processed: DateLike = None,
    today: Optional[date] = None,
) -> Optional[date]:
    """
    Compute the next due date of a recurrence.

    Args:
        frequency: Frequency or its string value; unknown/unset means monthly
        start_date: First anchor for scheduling
        day_of_month: 1-31, required for monthly/quarterly/yearly
        day_of_week: 0-6 (0 = Sunday), required for weekly/biweekly
        last_processed: Date of the last materialization, if any
        today: Reference day (defaults to date.today())

    Returns:
        The next due date, or None when the template cannot be scheduled
        (no parseable anchor, or a required anchor field is missing/invalid).
    """
    today = parse_anchor_date(today) or date.today()

    base = parse_anchor_date(last_processed) or parse_anchor_date(start_date)
    if base is None:
        logger.debug("invalid_anchor_date", start_date=start_date, last_processed=last_processed)
        return None

    if base < today:
        base = today

    freq = Frequency.parse(frequency)

    if freq == Frequency.DAILY:
        return base + timedelta(days=1)

    if freq in WEEK_INTERVALS:
        dow = _coerce_int(day_of_week)
        if dow is None or not 0 <= dow <= 6:
            logger.debug("missing_frequency_field", frequency=freq.value, field="day_of_week")
            return None
        return snap_to_weekday(base + timedelta(days=WEEK_INTERVALS[freq]), dow)

    if freq in MONTH_INTERVALS:
        dom = _coerce_int(day_of_month)
        if dom is None or not 1 <= dom <= 31:
            logger.debug("missing_frequency_field", frequency=freq.value, field="day_of_month")
            return None
        return clamp_to_day_of_month(add_months(base, MONTH_INTERVALS[freq]), dom)

    # Unknown or unset frequency: monthly, clamped only when a day is given
    advanced = add_months(base, 1)
    dom = _coerce_int(day_of_month)
    if dom is not None and 1 <= dom <= 31:
        advanced = clamp_to_day_of_month(advanced, dom)
    return advanced


def next_due_after_processing(template: RecurringTemplate, today: date) -> Optional[date]:
    """Next due date once the template has been materialized on `today`."""
    return compute_next_due_date(
        template.frequency,
        template.start_date,
        day_of_month=template.day_of_month,
        day_of_week=template.day_of_week,
        last_processed=today,
        today=today,
    )


def project_next_due(template: RecurringTemplate) -> Optional[date]:
    """
    Recompute a template's next due date from its schedule fields alone.

    The reference day is the anchor itself, so the result depends only on
    {frequency, start_date, day_of_month, day_of_week, last_processed}:
    one cycle after the last materialization, or one cycle after the
    start date for a template that was never processed.
    """
    anchor = template.last_processed or template.start_date
    if anchor is None:
        return None
    return compute_next_due_date(
        template.frequency,
        template.start_date,
        day_of_month=template.day_of_month,
        day_of_week=template.day_of_week,
        last_processed=template.last_processed,
        today=anchor,
    )


def with_projection(template: RecurringTemplate) -> RecurringTemplate:
    """
    Return the template with next_due set to its projection.

    A cached next_due that disagrees with the projection is stale and
    is replaced.
    """
    projected = project_next_due(template)
    if template.next_due is not None and template.next_due != projected:
        logger.warning(
            "stale_next_due",
            template_id=template.id,
            cached=template.next_due.isoformat(),
            projected=projected.isoformat() if projected else None,
        )
    if template.next_due == projected:
        return template
    return template.model_copy(update={"next_due": projected})
