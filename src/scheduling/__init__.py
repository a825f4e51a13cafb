"""Recurring-obligation scheduling package."""

from src.scheduling.activation import ActivationToggle
from src.scheduling.due import is_due, select_due
from src.scheduling.engine import (
    BatchAbortedError,
    MaterializationEngine,
    SchedulerError,
    TemplateNotDueError,
    build_ledger_entry,
)
from src.scheduling.recurrence import (
    compute_next_due_date,
    next_due_after_processing,
    parse_anchor_date,
    project_next_due,
    with_projection,
)

__all__ = [
    "ActivationToggle",
    "BatchAbortedError",
    "MaterializationEngine",
    "SchedulerError",
    "TemplateNotDueError",
    "build_ledger_entry",
    "compute_next_due_date",
    "is_due",
    "next_due_after_processing",
    "parse_anchor_date",
    "project_next_due",
    "select_due",
    "with_projection",
]
