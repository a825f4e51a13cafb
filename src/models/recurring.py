"""
Core Data Models for the Recurring Scheduler

These models define the schemas flowing between the scheduler and its
storage collaborators:
1. RecurringTemplate - a recurrence definition read from storage
2. LedgerEntry - one materialized transaction (immutable once created)
3. TemplateProcessingResult / BatchReport - per-item outcome of a batch

DESIGN DECISION: Templates are deliberately lenient. Rows come from a
spreadsheet that humans edit by hand, so an unparseable date or an unknown
frequency is stored as None and the scheduler treats it as "cannot schedule"
instead of refusing to load the row. Strict checks live in the validator
and only run when a template is created.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Frequency(str, Enum):
    """
    Supported recurrence frequencies.

    Closed set: there are no custom intervals.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value) -> Optional["Frequency"]:
        """Return the matching frequency, or None for blank/unknown values."""
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None

    @property
    def uses_day_of_week(self) -> bool:
        return self in (Frequency.WEEKLY, Frequency.BIWEEKLY)

    @property
    def uses_day_of_month(self) -> bool:
        return self in (Frequency.MONTHLY, Frequency.QUARTERLY, Frequency.YEARLY)


class ProcessingOutcome(str, Enum):
    """Outcome of one template within a materialization batch."""
    MATERIALIZED = "materialized"   # Ledger entry written, schedule advanced
    SKIPPED = "skipped"             # Already claimed or no longer due
    FAILED = "failed"               # Persistence error
    TIMED_OUT = "timed_out"         # Step exceeded its timeout
    NOT_STARTED = "not_started"     # Batch aborted or batch deadline passed


# =============================================================================
# TEMPLATE & LEDGER MODELS
# =============================================================================

class RecurringTemplate(BaseModel):
    """
    A recurrence definition.

    `next_due` is a projection of the other schedule fields. It may be
    cached here, but the scheduler always recomputes it before trusting it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = Field(
        default=None,
        description="Opaque identifier, assigned by storage"
    )

    # Opaque to the scheduler
    description: str = ""
    category: str = ""
    subcategory: str = ""
    account: str = ""
    notes: str = ""

    amount_primary: Optional[Decimal] = Field(
        default=None,
        description="Amount in the primary currency (EUR)"
    )
    amount_secondary: Optional[Decimal] = Field(
        default=None,
        description="Amount in the secondary currency (USD)"
    )

    # Schedule
    frequency: Optional[Frequency] = Field(
        default=None,
        description="None when storage holds an unknown value"
    )
    frequency_text: str = Field(
        default="",
        description="Frequency exactly as stored; kept for values that do not parse"
    )
    day_of_month: Optional[int] = Field(
        default=None,
        description="1-31, for monthly/quarterly/yearly"
    )
    day_of_week: Optional[int] = Field(
        default=None,
        description="0-6 with 0 = Sunday, for weekly/biweekly"
    )
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    last_processed: Optional[date] = None
    next_due: Optional[date] = None

    active: bool = True

    def is_ended(self, today: date) -> bool:
        """True once end_date has passed."""
        return self.end_date is not None and self.end_date < today


class LedgerEntry(BaseModel):
    """
    A concrete transaction produced by materializing a template.

    CRITICAL: Entries are written once and never modified afterwards.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=_utcnow)

    entry_date: date = Field(
        ...,
        description="Day of materialization (not the template's due date)"
    )
    description: str = ""
    category: str = ""
    subcategory: str = ""
    amount_primary: Optional[Decimal] = None
    amount_secondary: Optional[Decimal] = None
    account: str = ""
    notes: str = ""

    # Non-owning back-reference
    source_template_id: Optional[str] = None


# =============================================================================
# BATCH RESULT MODELS
# =============================================================================

class TemplateProcessingResult(BaseModel):
    """What happened to one template in a batch."""

    template_id: Optional[str]
    description: str = ""
    outcome: ProcessingOutcome
    entry_id: Optional[UUID] = None
    next_due: Optional[date] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == ProcessingOutcome.MATERIALIZED


class BatchReport(BaseModel):
    """
    Aggregated result of one process_all_due run.

    A failure on one template never hides the status of the others:
    every due template appears in `results` exactly once.
    """

    run_date: date
    correlation_id: UUID = Field(default_factory=uuid4)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    due_count: int = Field(default=0, ge=0)
    results: list[TemplateProcessingResult] = Field(default_factory=list)

    def _count(self, *outcomes: ProcessingOutcome) -> int:
        return sum(1 for r in self.results if r.outcome in outcomes)

    @property
    def processed_count(self) -> int:
        """Number of occurrences materialized successfully."""
        return self._count(ProcessingOutcome.MATERIALIZED)

    @property
    def failed_count(self) -> int:
        return self._count(ProcessingOutcome.FAILED, ProcessingOutcome.TIMED_OUT)

    @property
    def skipped_count(self) -> int:
        return self._count(ProcessingOutcome.SKIPPED, ProcessingOutcome.NOT_STARTED)

    @property
    def has_failures(self) -> bool:
        return self.failed_count > 0

    @property
    def failures(self) -> list[TemplateProcessingResult]:
        return [
            r for r in self.results
            if r.outcome in (ProcessingOutcome.FAILED, ProcessingOutcome.TIMED_OUT)
        ]

    def summary(self) -> str:
        """
        Human-readable one-liner.

        Always states how many occurrences succeeded, so a partial failure
        still tells the user how much backlog is left.
        """
        text = (
            f"Processed {self.processed_count} of {self.due_count} due "
            f"recurring transaction(s) for {self.run_date.isoformat()}"
        )
        extras = []
        if self.failed_count:
            extras.append(f"{self.failed_count} failed")
        if self.skipped_count:
            extras.append(f"{self.skipped_count} skipped")
        if extras:
            text += " (" + ", ".join(extras) + ")"
        return text


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found on a template."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'missing_frequency_field', 'out_of_range')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Result of validating a template before it is stored."""

    validated_at: datetime = Field(default_factory=_utcnow)
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]
