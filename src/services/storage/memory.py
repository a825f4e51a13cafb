"""
In-Memory Storage

Implements the storage interfaces on plain Python containers.
Used by the test-suite and by dry runs of the scheduler (`run --memory`).

Each operation yields to the event loop once before touching state, so
concurrent callers interleave the way they would against a real backend.
The compare-and-swap itself runs without an await in between and is
therefore atomic within one event loop.
"""

import asyncio
from datetime import date
from typing import Optional
from uuid import UUID

from src.models.audit import AuditEvent
from src.models.recurring import LedgerEntry, RecurringTemplate
from src.scheduling.recurrence import with_projection
from src.services.storage.interface import (
    NO_EXPECTATION,
    AuditStorageInterface,
    LedgerStoreInterface,
    NotFoundError,
    ScheduleConflictError,
    TemplateStoreInterface,
)


class InMemoryTemplateStorage(TemplateStoreInterface):
    """Template storage backed by a dict, IDs mimic sheet rows."""

    def __init__(self, templates: Optional[list[RecurringTemplate]] = None):
        self._templates: dict[str, RecurringTemplate] = {}
        self._next_row = 2  # Row 1 is the header in the sheet layout
        for template in templates or []:
            self._insert(template)

    def _insert(self, template: RecurringTemplate) -> RecurringTemplate:
        template_id = template.id or f"recurring-{self._next_row}"
        self._next_row += 1
        stored = with_projection(template.model_copy(update={"id": template_id}))
        self._templates[template_id] = stored
        return stored

    async def list_templates(self) -> list[RecurringTemplate]:
        await asyncio.sleep(0)
        return list(self._templates.values())

    async def get_template(
        self,
        template_id: str,
        fresh: bool = False,
    ) -> Optional[RecurringTemplate]:
        await asyncio.sleep(0)
        return self._templates.get(template_id)

    async def add_template(self, template: RecurringTemplate) -> RecurringTemplate:
        await asyncio.sleep(0)
        return self._insert(template)

    async def update_template_schedule(
        self,
        template_id: str,
        last_processed: Optional[date],
        next_due: Optional[date],
        expected_last_processed=NO_EXPECTATION,
    ) -> None:
        await asyncio.sleep(0)
        self._set_schedule(template_id, last_processed, next_due, expected_last_processed)

    def _set_schedule(
        self,
        template_id: str,
        last_processed: Optional[date],
        next_due: Optional[date],
        expected_last_processed,
    ) -> None:
        current = self._templates.get(template_id)
        if current is None:
            raise NotFoundError(f"Template not found: {template_id}")
        if (
            expected_last_processed is not NO_EXPECTATION
            and current.last_processed != expected_last_processed
        ):
            raise ScheduleConflictError(
                f"Template {template_id} was processed concurrently "
                f"(expected last processed {expected_last_processed}, "
                f"found {current.last_processed})"
            )
        self._templates[template_id] = current.model_copy(
            update={"last_processed": last_processed, "next_due": next_due}
        )

    async def update_template_active(self, template_id: str, active: bool) -> None:
        await asyncio.sleep(0)
        current = self._templates.get(template_id)
        if current is None:
            raise NotFoundError(f"Template not found: {template_id}")
        self._templates[template_id] = current.model_copy(update={"active": active})

    def invalidate_cache(self) -> None:
        # Nothing is cached: the dict is the source of truth
        pass


class InMemoryLedgerStorage(LedgerStoreInterface):
    """Append-only list of ledger entries."""

    def __init__(self):
        self.entries: list[LedgerEntry] = []

    async def append_ledger_entry(self, entry: LedgerEntry) -> None:
        await asyncio.sleep(0)
        self.entries.append(entry)

    async def list_ledger_entries(
        self,
        source_template_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        await asyncio.sleep(0)
        if source_template_id is None:
            return list(self.entries)
        return [e for e in self.entries if e.source_template_id == source_template_id]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return sorted(
            (e for e in self.events if e.correlation_id == correlation_id),
            key=lambda e: e.timestamp,
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return sorted(
            (
                e for e in self.events
                if e.entity_type == entity_type and e.entity_id == entity_id
            ),
            key=lambda e: e.timestamp,
        )
