"""
Main Orchestrator for the Household Ledger Scheduler

This module ties together all the components and defines the
end-to-end flows for:
1. Template creation (validate → store → audit)
2. Activation toggling
3. Materialization batches (select due → claim → write entry → audit)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No template is stored without passing validation
- No batch bypasses the engine's locks and claims
- Every step is audited

One RecurringScheduler (and therefore one engine) should serve every
trigger in the process, so that concurrent triggers share the same
per-template locks.
"""

from datetime import date
from typing import Callable, Optional

import structlog

from src.audit import AuditLogger
from src.config import SchedulerSettings, get_settings
from src.models.recurring import BatchReport, RecurringTemplate
from src.scheduling import ActivationToggle, MaterializationEngine, with_projection
from src.services.storage import (
    ConnectionError as StorageConnectionError,
    LedgerStoreInterface,
    TemplateStoreInterface,
)
from src.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsTemplateStorage,
)
from src.services.storage.memory import InMemoryLedgerStorage, InMemoryTemplateStorage
from src.validation import TemplateValidator


logger = structlog.get_logger(__name__)


class RecurringScheduler:
    """
    Facade over stores, engine, activation toggle and validator.

    Flow for a batch:
    1. Re-read all templates (cache dropped)
    2. Select the due ones
    3. Materialize each one under its lock
    4. Report per-template outcomes
    """

    def __init__(
        self,
        template_store: TemplateStoreInterface,
        ledger_store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TemplateValidator] = None,
        scheduler_settings: Optional[SchedulerSettings] = None,
        clock: Callable[[], date] = date.today,
    ):
        scheduler_settings = scheduler_settings or get_settings().scheduler

        self._templates = template_store
        self._ledger = ledger_store
        self._audit_logger = audit_logger
        self._validator = validator or TemplateValidator()
        self._clock = clock

        self.engine = MaterializationEngine(
            template_store,
            ledger_store,
            audit_logger=audit_logger,
            step_timeout=scheduler_settings.step_timeout_seconds,
            batch_timeout=scheduler_settings.batch_timeout_seconds,
            stop_on_error=scheduler_settings.stop_on_error,
            clock=clock,
        )
        self.activation = ActivationToggle(template_store, audit_logger)

    @property
    def template_store(self) -> TemplateStoreInterface:
        return self._templates

    @property
    def ledger_store(self) -> LedgerStoreInterface:
        return self._ledger

    async def list_templates(self, refresh: bool = False) -> list[RecurringTemplate]:
        """All templates, active or not, with next_due freshly projected."""
        if refresh:
            self._templates.invalidate_cache()
        templates = await self._templates.list_templates()
        return [with_projection(t) for t in templates]

    async def create_template(self, template: RecurringTemplate) -> RecurringTemplate:
        """
        Validate and store a new template.

        Raises:
            TemplateValidationError: If the template has error-level issues
            PersistenceError: If the write fails
        """
        result = self._validator.ensure_valid(template)
        for warning in result.warnings:
            logger.warning("template_validation_warning", message=warning)

        stored = await self._templates.add_template(template)
        logger.info(
            "template_created",
            template_id=stored.id,
            frequency=stored.frequency.value,
            next_due=stored.next_due.isoformat() if stored.next_due else None,
        )
        if self._audit_logger:
            await self._audit_logger.log_template_created(
                template_id=stored.id,
                description=stored.description,
                frequency=stored.frequency.value,
            )
        return stored

    async def set_active(self, template_id: str, active: bool) -> None:
        """Activate or deactivate a template."""
        await self.activation.set_active(template_id, active)

    async def process_all_due(self, today: Optional[date] = None) -> BatchReport:
        """Run one materialization batch."""
        return await self.engine.process_all_due(today or self._clock())


class StorageNotConfiguredError(StorageConnectionError):
    """Google Sheets storage was requested but could not be set up."""
    pass


def create_app_components(
    use_storage: bool = True,
    fallback_to_memory: bool = True,
) -> RecurringScheduler:
    """
    Factory function to create the scheduler.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run against in-memory stores.
        fallback_to_memory: When Sheets storage cannot be set up, continue
                    with in-memory stores instead of raising. Batch
                    triggers that write for real should pass False.

    Returns:
        A ready RecurringScheduler

    Raises:
        StorageNotConfiguredError: If storage cannot be set up and
            fallback_to_memory is False
    """
    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            return RecurringScheduler(
                GoogleSheetsTemplateStorage(sheets_client),
                GoogleSheetsLedgerStorage(sheets_client),
                audit_logger=AuditLogger(GoogleSheetsAuditStorage(sheets_client)),
            )
        except Exception as e:
            if not fallback_to_memory:
                logger.error("storage_not_configured", error=str(e))
                raise StorageNotConfiguredError(f"Storage not configured: {e}") from e
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))

    return RecurringScheduler(
        InMemoryTemplateStorage(),
        InMemoryLedgerStorage(),
        audit_logger=AuditLogger(),  # Local-only logging
    )
