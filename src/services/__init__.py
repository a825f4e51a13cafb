"""Services package."""

from src.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStoreInterface,
    NotFoundError,
    PersistenceError,
    ScheduleConflictError,
    TemplateStoreInterface,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "LedgerStoreInterface",
    "NotFoundError",
    "PersistenceError",
    "ScheduleConflictError",
    "TemplateStoreInterface",
]
