"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep caching explicit (invalidate_cache) instead of ambient
4. Keep scheduler logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the recurring scheduler needs.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from src.models.audit import AuditEvent
from src.models.recurring import LedgerEntry, RecurringTemplate


class _NoExpectation:
    """Sentinel type: skip the compare-and-swap check."""

    def __repr__(self) -> str:
        return "NO_EXPECTATION"


NO_EXPECTATION = _NoExpectation()


class TemplateStoreInterface(ABC):
    """
    Abstract interface for recurring template storage.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def list_templates(self) -> list[RecurringTemplate]:
        """
        List all templates, active or not.

        Returns:
            Templates with next_due projected from their schedule fields

        Raises:
            PersistenceError: If the read fails
        """
        pass

    @abstractmethod
    async def get_template(
        self,
        template_id: str,
        fresh: bool = False,
    ) -> Optional[RecurringTemplate]:
        """
        Retrieve a template by its ID.

        Args:
            template_id: The template's identifier
            fresh: Bypass any cache and read from the backend

        Returns:
            The template if found, None otherwise
        """
        pass

    @abstractmethod
    async def add_template(self, template: RecurringTemplate) -> RecurringTemplate:
        """
        Store a new template.

        Returns:
            The stored template with its assigned ID

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def update_template_schedule(
        self,
        template_id: str,
        last_processed: Optional[date],
        next_due: Optional[date],
        expected_last_processed=NO_EXPECTATION,
    ) -> None:
        """
        Write a template's processing state.

        Args:
            template_id: The template's identifier
            last_processed: New last-processed date
            next_due: New next-due date (a projection; backends may drop it)
            expected_last_processed: When given, the write only happens if
                the stored last_processed still equals this value

        Raises:
            ScheduleConflictError: If the expectation is not met
            NotFoundError: If the template doesn't exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def update_template_active(self, template_id: str, active: bool) -> None:
        """
        Set a template's active flag.

        Raises:
            NotFoundError: If the template doesn't exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    def invalidate_cache(self) -> None:
        """Drop any cached templates so the next read hits the backend."""
        pass


class LedgerStoreInterface(ABC):
    """
    Abstract interface for ledger entry storage.

    Ledger entries are append-only.
    """

    @abstractmethod
    async def append_ledger_entry(self, entry: LedgerEntry) -> None:
        """
        Append a ledger entry.

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def list_ledger_entries(
        self,
        source_template_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        """
        List ledger entries, optionally only those produced by one template.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one materialization batch).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass


class PersistenceError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(PersistenceError):
    """Entity not found in storage."""
    pass


class ConnectionError(PersistenceError):
    """Could not connect to storage backend."""
    pass


class ScheduleConflictError(PersistenceError):
    """The stored schedule changed since it was read (lost compare-and-swap)."""
    pass
