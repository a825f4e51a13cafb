"""
Materialization Engine

Turns due occurrences into ledger entries and advances each template's
schedule.

GUARANTEES:
- At most one ledger entry per due occurrence, even when two batches run
  at the same time:
  1. A per-template lock serializes materialization within this engine.
  2. Under the lock the template is re-read from storage and re-checked
     for due-ness; an occurrence processed meanwhile is skipped.
  3. The schedule is claimed with a compare-and-swap on last_processed
     BEFORE the ledger entry is written, so a second process that read the
     same row loses the swap instead of writing a duplicate entry.
     If the ledger store raises, the claim is released. If the write is
     cancelled (timeout), its outcome is unknown and the claim is kept.
- One template's failure never hides the status of the others: every due
  template ends up in the BatchReport with its own outcome.
- Every step runs under a timeout, and the whole batch under a deadline.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Callable, Optional
from uuid import UUID

import structlog

from src.audit.logger import AuditLogger, create_correlation_id
from src.models.recurring import (
    BatchReport,
    Frequency,
    LedgerEntry,
    ProcessingOutcome,
    RecurringTemplate,
    TemplateProcessingResult,
)
from src.scheduling.due import is_due, select_due
from src.scheduling.recurrence import next_due_after_processing, with_projection
from src.services.storage.interface import (
    LedgerStoreInterface,
    NotFoundError,
    PersistenceError,
    ScheduleConflictError,
    TemplateStoreInterface,
)


logger = structlog.get_logger(__name__)


class SchedulerError(Exception):
    """Base exception for scheduler operations."""
    pass


class TemplateNotDueError(SchedulerError):
    """The occurrence is not (or no longer) due; nothing was written."""

    def __init__(self, template_id: Optional[str], reason: str):
        self.template_id = template_id
        self.reason = reason
        super().__init__(f"Template {template_id} not materialized: {reason}")


class BatchAbortedError(SchedulerError):
    """
    A batch stopped after a failure (stop_on_error mode).

    Carries the partial report, so callers still learn how many
    occurrences succeeded before the failure.
    """

    def __init__(self, report: BatchReport, cause: Exception):
        self.report = report
        self.cause = cause
        super().__init__(f"{report.summary()}; aborted: {cause}")


def frequency_annotation(template: RecurringTemplate) -> str:
    """
    Notes text for a generated entry, e.g. 'Gym (Recurring: monthly)'.

    An unknown frequency is annotated with the text storage holds for it,
    not with the monthly cadence the calculator fell back to.
    """
    if template.frequency:
        frequency = template.frequency.value
    else:
        frequency = template.frequency_text or Frequency.MONTHLY.value
    if template.notes:
        return f"{template.notes} (Recurring: {frequency})"
    return f"Recurring: {frequency}"


def build_ledger_entry(template: RecurringTemplate, today: date) -> LedgerEntry:
    """Build the ledger entry for materializing `template` on `today`."""
    return LedgerEntry(
        entry_date=today,
        description=template.description,
        category=template.category,
        subcategory=template.subcategory,
        amount_primary=template.amount_primary,
        amount_secondary=template.amount_secondary,
        account=template.account,
        notes=frequency_annotation(template),
        source_template_id=template.id,
    )


class MaterializationEngine:
    """
    Materializes due recurring templates into ledger entries.

    One engine instance should be shared by everything that can trigger a
    batch in this process, so that its per-template locks are shared too.
    """

    def __init__(
        self,
        template_store: TemplateStoreInterface,
        ledger_store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        step_timeout: float = 30.0,
        batch_timeout: float = 300.0,
        stop_on_error: bool = False,
        clock: Callable[[], date] = date.today,
    ):
        """
        Initialize the engine.

        Args:
            template_store: Where templates are read and their schedule written
            ledger_store: Where generated entries are appended
            audit_logger: Optional audit trail
            step_timeout: Seconds allowed for one template
            batch_timeout: Seconds allowed for a whole batch
            stop_on_error: Abort the batch at the first failure
            clock: Source of "today" when callers don't pass one
        """
        self._templates = template_store
        self._ledger = ledger_store
        self._audit_logger = audit_logger
        self._step_timeout = step_timeout
        self._batch_timeout = batch_timeout
        self._stop_on_error = stop_on_error
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, template_id: str) -> asyncio.Lock:
        lock = self._locks.get(template_id)
        if lock is None:
            lock = self._locks[template_id] = asyncio.Lock()
        return lock

    async def process_template(
        self,
        template: RecurringTemplate,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        """
        Materialize one occurrence of a template.

        Returns:
            The created ledger entry

        Raises:
            TemplateNotDueError: If the occurrence is not due or was claimed
                by a concurrent run; nothing was written
            NotFoundError: If the template no longer exists
            PersistenceError: If a storage write fails
        """
        today = today or self._clock()
        if not template.id:
            raise NotFoundError("Template has no ID; it was never stored")

        async with self._lock_for(template.id):
            current = await self._templates.get_template(template.id, fresh=True)
            if current is None:
                raise NotFoundError(f"Template not found: {template.id}")

            current = with_projection(current)
            if not is_due(current, today):
                raise TemplateNotDueError(current.id, "not due or already processed")

            next_due = next_due_after_processing(current, today)

            # Claim the occurrence before writing anything the user sees
            try:
                await self._templates.update_template_schedule(
                    current.id,
                    last_processed=today,
                    next_due=next_due,
                    expected_last_processed=current.last_processed,
                )
            except ScheduleConflictError as e:
                raise TemplateNotDueError(current.id, str(e)) from e

            entry = build_ledger_entry(current, today)
            try:
                await self._ledger.append_ledger_entry(entry)
            except asyncio.CancelledError:
                # A write running in a worker thread may still land, so
                # the claim stays: the occurrence is skipped, never duplicated
                logger.warning(
                    "ledger_write_interrupted",
                    template_id=current.id,
                    run_date=today.isoformat(),
                )
                raise
            except Exception:
                await self._release_claim(current, today)
                raise

        logger.info(
            "occurrence_materialized",
            template_id=current.id,
            entry_id=str(entry.id),
            run_date=today.isoformat(),
            next_due=next_due.isoformat() if next_due else None,
        )
        if self._audit_logger:
            await self._audit_logger.log_occurrence_materialized(
                template_id=current.id,
                entry_id=entry.id,
                run_date=today,
                next_due=next_due,
                correlation_id=correlation_id,
            )
        return entry

    async def _release_claim(self, claimed: RecurringTemplate, today: date) -> None:
        """Undo a claim whose ledger write failed."""
        try:
            await self._templates.update_template_schedule(
                claimed.id,
                last_processed=claimed.last_processed,
                next_due=claimed.next_due,
                expected_last_processed=today,
            )
        except Exception as e:
            # The occurrence stays claimed: it is skipped, never duplicated
            logger.error(
                "claim_release_failed",
                template_id=claimed.id,
                run_date=today.isoformat(),
                error=str(e),
            )

    async def process_all_due(self, today: Optional[date] = None) -> BatchReport:
        """
        Materialize every due template, one after the other.

        Returns:
            BatchReport with one result per due template;
            report.processed_count is the number of entries created

        Raises:
            PersistenceError: If the template list cannot be read
            BatchAbortedError: In stop_on_error mode, after the first failure
        """
        today = today or self._clock()
        correlation_id = create_correlation_id()
        report = BatchReport(run_date=today, correlation_id=correlation_id)

        self._templates.invalidate_cache()
        try:
            templates = await self._templates.list_templates()
        except PersistenceError as e:
            logger.error("template_list_failed", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    "template_store", str(e), correlation_id
                )
            raise
        await self._log_unresolvable(templates, correlation_id)

        due = select_due(templates, today)
        report.due_count = len(due)
        logger.info(
            "batch_started",
            correlation_id=str(correlation_id),
            run_date=today.isoformat(),
            due=len(due),
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._batch_timeout

        for index, template in enumerate(due):
            remaining = deadline - loop.time()
            if remaining <= 0:
                self._mark_not_started(report, due[index:], "batch time limit reached")
                break

            result = await self._process_one(
                template, today, correlation_id, min(self._step_timeout, remaining)
            )
            report.results.append(result)

            failed = result.outcome in (ProcessingOutcome.FAILED, ProcessingOutcome.TIMED_OUT)
            if self._stop_on_error and failed:
                self._mark_not_started(report, due[index + 1:], "batch aborted")
                await self._finish(report, aborted=True)
                raise BatchAbortedError(
                    report, PersistenceError(result.error_message or "unknown error")
                )

        await self._finish(report)
        return report

    async def _process_one(
        self,
        template: RecurringTemplate,
        today: date,
        correlation_id: UUID,
        timeout: float,
    ) -> TemplateProcessingResult:
        """Run process_template and turn its outcome into a result record."""
        try:
            entry = await asyncio.wait_for(
                self.process_template(template, today, correlation_id),
                timeout=timeout,
            )
        except TemplateNotDueError as e:
            logger.info("occurrence_skipped", template_id=template.id, reason=e.reason)
            if self._audit_logger:
                await self._audit_logger.log_occurrence_skipped(
                    template.id, e.reason, correlation_id
                )
            return TemplateProcessingResult(
                template_id=template.id,
                description=template.description,
                outcome=ProcessingOutcome.SKIPPED,
                error_message=e.reason,
            )
        except asyncio.TimeoutError:
            message = f"timed out after {timeout:.1f}s"
            logger.error("materialization_timed_out", template_id=template.id, timeout=timeout)
            if self._audit_logger:
                await self._audit_logger.log_materialization_failed(
                    template.id, message, correlation_id
                )
            return TemplateProcessingResult(
                template_id=template.id,
                description=template.description,
                outcome=ProcessingOutcome.TIMED_OUT,
                error_message=message,
            )
        except PersistenceError as e:
            logger.error("materialization_failed", template_id=template.id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_materialization_failed(
                    template.id, str(e), correlation_id
                )
            return TemplateProcessingResult(
                template_id=template.id,
                description=template.description,
                outcome=ProcessingOutcome.FAILED,
                error_message=str(e),
            )
        except Exception as e:
            logger.exception("materialization_crashed", template_id=template.id)
            if self._audit_logger:
                await self._audit_logger.log_error(
                    type(e).__name__,
                    str(e),
                    details={"template_id": template.id},
                    correlation_id=correlation_id,
                )
            return TemplateProcessingResult(
                template_id=template.id,
                description=template.description,
                outcome=ProcessingOutcome.FAILED,
                error_message=f"{type(e).__name__}: {e}",
            )

        return TemplateProcessingResult(
            template_id=template.id,
            description=template.description,
            outcome=ProcessingOutcome.MATERIALIZED,
            entry_id=entry.id,
            next_due=next_due_after_processing(template, today),
        )

    @staticmethod
    def _mark_not_started(
        report: BatchReport,
        templates: list[RecurringTemplate],
        reason: str,
    ) -> None:
        for template in templates:
            report.results.append(TemplateProcessingResult(
                template_id=template.id,
                description=template.description,
                outcome=ProcessingOutcome.NOT_STARTED,
                error_message=reason,
            ))

    async def _log_unresolvable(
        self,
        templates: list[RecurringTemplate],
        correlation_id: UUID,
    ) -> None:
        for template in templates:
            if template.active and with_projection(template).next_due is None:
                logger.warning(
                    "schedule_unresolvable",
                    template_id=template.id,
                    description=template.description,
                )
                if self._audit_logger:
                    await self._audit_logger.log_schedule_unresolvable(
                        template.id, template.description, correlation_id
                    )

    async def _finish(self, report: BatchReport, aborted: bool = False) -> None:
        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "batch_finished",
            correlation_id=str(report.correlation_id),
            processed=report.processed_count,
            failed=report.failed_count,
            skipped=report.skipped_count,
            aborted=aborted,
        )
        if self._audit_logger:
            await self._audit_logger.log_batch_finished(
                summary=report.summary(),
                processed=report.processed_count,
                failed=report.failed_count,
                due=report.due_count,
                correlation_id=report.correlation_id,
                aborted=aborted,
            )
