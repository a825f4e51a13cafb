"""
Audit Models for the Recurring Scheduler

Every change the scheduler makes to a user's ledger is logged for audit
purposes. This provides:
1. Traceability from a ledger entry back to the batch that created it
2. Debugging information when a batch partially fails
3. A history the user can read in the AuditLog worksheet

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Template lifecycle
    TEMPLATE_CREATED = "template_created"
    TEMPLATE_ACTIVATED = "template_activated"
    TEMPLATE_DEACTIVATED = "template_deactivated"
    SCHEDULE_UNRESOLVABLE = "schedule_unresolvable"

    # Materialization
    OCCURRENCE_MATERIALIZED = "occurrence_materialized"
    OCCURRENCE_SKIPPED = "occurrence_skipped"
    MATERIALIZATION_FAILED = "materialization_failed"

    # Batches
    BATCH_COMPLETED = "batch_completed"
    BATCH_ABORTED = "batch_aborted"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'template', 'ledger_entry', 'batch')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one batch share an ID
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.template_created(template_id, "Rent", "monthly")
        event = AuditEventBuilder.occurrence_materialized(...)
    """

    @staticmethod
    def template_created(
        template_id: str,
        description: str,
        frequency: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_CREATED,
            entity_type="template",
            entity_id=template_id,
            description=f"Recurring transaction created: {description} ({frequency})",
            details={
                "frequency": frequency,
            },
            is_user_action=True,
        )

    @staticmethod
    def activation_changed(
        template_id: str,
        active: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.TEMPLATE_ACTIVATED
                if active
                else AuditEventType.TEMPLATE_DEACTIVATED
            ),
            entity_type="template",
            entity_id=template_id,
            description=f"Recurring transaction {'activated' if active else 'deactivated'}",
            details={
                "active": active,
            },
            is_user_action=True,
        )

    @staticmethod
    def schedule_unresolvable(
        template_id: Optional[str],
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_UNRESOLVABLE,
            severity=AuditSeverity.WARNING,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Cannot compute next due date for: {description}",
        )

    @staticmethod
    def occurrence_materialized(
        template_id: str,
        entry_id: UUID,
        run_date: date,
        next_due: Optional[date],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_MATERIALIZED,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Ledger entry created for {run_date.isoformat()}",
            details={
                "entry_id": str(entry_id),
                "run_date": run_date.isoformat(),
                "next_due": next_due.isoformat() if next_due else None,
            },
        )

    @staticmethod
    def occurrence_skipped(
        template_id: str,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_SKIPPED,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Occurrence skipped: {reason}",
            details={
                "reason": reason,
            },
        )

    @staticmethod
    def materialization_failed(
        template_id: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MATERIALIZATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description="Failed to materialize recurring transaction",
            error_message=error_message,
        )

    @staticmethod
    def batch_finished(
        summary: str,
        processed: int,
        failed: int,
        due: int,
        correlation_id: UUID,
        aborted: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.BATCH_ABORTED if aborted else AuditEventType.BATCH_COMPLETED
            ),
            severity=AuditSeverity.ERROR if aborted else (
                AuditSeverity.WARNING if failed else AuditSeverity.INFO
            ),
            entity_type="batch",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description=summary,
            details={
                "processed": processed,
                "failed": failed,
                "due": due,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
