"""
Data Models Package

This package contains all Pydantic models used by the recurring scheduler.
All data flowing between the scheduler and storage must conform to these schemas.
"""

from src.models.recurring import (
    BatchReport,
    Frequency,
    LedgerEntry,
    ProcessingOutcome,
    RecurringTemplate,
    TemplateProcessingResult,
    ValidationIssue,
    ValidationResult,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Scheduler models
    "BatchReport",
    "Frequency",
    "LedgerEntry",
    "ProcessingOutcome",
    "RecurringTemplate",
    "TemplateProcessingResult",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
