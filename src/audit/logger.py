"""
Audit Logger

DESIGN DECISION: Every change the scheduler makes is logged.
This provides:
1. Complete traceability of generated ledger entries
2. Debugging capability when a batch partially fails
3. User can see history of their recurring transactions

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't break a batch if logging fails)
- Supports correlation IDs to trace all events of one batch
"""

import logging
import sys
from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder
from src.services.storage.interface import AuditStorageInterface


def configure_logging(level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure stdlib logging and structlog together.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Google Sheets (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_template_created(
        self,
        template_id: str,
        description: str,
        frequency: str,
    ) -> None:
        """Log template creation."""
        await self.log(AuditEventBuilder.template_created(
            template_id=template_id,
            description=description,
            frequency=frequency,
        ))

    async def log_activation_changed(self, template_id: str, active: bool) -> None:
        """Log an activation toggle."""
        await self.log(AuditEventBuilder.activation_changed(
            template_id=template_id,
            active=active,
        ))

    async def log_schedule_unresolvable(
        self,
        template_id: Optional[str],
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.schedule_unresolvable(
            template_id=template_id,
            description=description,
            correlation_id=correlation_id,
        ))

    async def log_occurrence_materialized(
        self,
        template_id: str,
        entry_id: UUID,
        run_date: date,
        next_due: Optional[date],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a successful materialization."""
        await self.log(AuditEventBuilder.occurrence_materialized(
            template_id=template_id,
            entry_id=entry_id,
            run_date=run_date,
            next_due=next_due,
            correlation_id=correlation_id,
        ))

    async def log_occurrence_skipped(
        self,
        template_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.occurrence_skipped(
            template_id=template_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_materialization_failed(
        self,
        template_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.materialization_failed(
            template_id=template_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_batch_finished(
        self,
        summary: str,
        processed: int,
        failed: int,
        due: int,
        correlation_id: UUID,
        aborted: bool = False,
    ) -> None:
        """Log the end of a materialization batch."""
        await self.log(AuditEventBuilder.batch_finished(
            summary=summary,
            processed=processed,
            failed=failed,
            due=due,
            correlation_id=correlation_id,
            aborted=aborted,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new batch or user action.
    Pass it through all subsequent operations.
    """
    return uuid4()
