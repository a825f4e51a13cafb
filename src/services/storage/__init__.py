"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the production backend; the in-memory backend serves
tests and dry runs.

Backends are imported from their own modules
(src.services.storage.google_sheets, src.services.storage.memory):
they depend on the scheduling package, which itself depends on these
interfaces.
"""

from src.services.storage.interface import (
    NO_EXPECTATION,
    AuditStorageInterface,
    ConnectionError,
    LedgerStoreInterface,
    NotFoundError,
    PersistenceError,
    ScheduleConflictError,
    TemplateStoreInterface,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    "TemplateStoreInterface",
    "NO_EXPECTATION",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "PersistenceError",
    "ScheduleConflictError",
]
