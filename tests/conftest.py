"""
Shared test fixtures.

No test talks to Google: storage is either in memory or a fake gspread
worksheet that keeps its rows in a list.
"""

import asyncio
import time
from datetime import date
from decimal import Decimal

import pytest
from gspread.utils import a1_to_rowcol

from src.audit import AuditLogger
from src.models.recurring import Frequency, RecurringTemplate
from src.services.storage import NO_EXPECTATION, PersistenceError
from src.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    RECURRING_COLUMNS,
    TRANSACTION_COLUMNS,
)
from src.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemoryTemplateStorage,
)


def make_template(**overrides) -> RecurringTemplate:
    """A valid monthly template; override any field."""
    fields = dict(
        description="Rent",
        category="Housing",
        subcategory="Rent",
        account="Checking",
        amount_primary=Decimal("950.00"),
        frequency=Frequency.MONTHLY,
        day_of_month=1,
        start_date=date(2024, 1, 1),
    )
    fields.update(overrides)
    return RecurringTemplate(**fields)


@pytest.fixture
def template_factory():
    return make_template


@pytest.fixture
def ledger_store():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


class FailingLedgerStorage(InMemoryLedgerStorage):
    """Raises for entries generated from the given template IDs."""

    def __init__(self, failing_ids, error=None):
        super().__init__()
        self.failing_ids = set(failing_ids)
        self.error = error or PersistenceError("Transactions sheet unavailable")

    async def append_ledger_entry(self, entry):
        if entry.source_template_id in self.failing_ids:
            raise self.error
        await super().append_ledger_entry(entry)


class SlowLedgerStorage(InMemoryLedgerStorage):
    """Takes `delay` seconds per append."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def append_ledger_entry(self, entry):
        await asyncio.sleep(self.delay)
        await super().append_ledger_entry(entry)


class ThreadBlockingLedgerStorage(InMemoryLedgerStorage):
    """
    Appends from a worker thread after `delay` seconds, like the Sheets
    backend does. Cancelling the caller does not stop the thread.
    """

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    def _append_blocking(self, entry):
        time.sleep(self.delay)
        self.entries.append(entry)

    async def append_ledger_entry(self, entry):
        await asyncio.to_thread(self._append_blocking, entry)


class ThreadBlockingTemplateStorage(InMemoryTemplateStorage):
    """Runs each schedule compare-and-swap in a worker thread after `delay` seconds."""

    def __init__(self, templates, delay: float):
        super().__init__(templates)
        self.delay = delay

    def _set_schedule_blocking(self, *args):
        time.sleep(self.delay)
        self._set_schedule(*args)

    async def update_template_schedule(
        self,
        template_id,
        last_processed,
        next_due,
        expected_last_processed=NO_EXPECTATION,
    ):
        await asyncio.to_thread(
            self._set_schedule_blocking,
            template_id, last_processed, next_due, expected_last_processed,
        )


class FailingListTemplateStorage(InMemoryTemplateStorage):
    async def list_templates(self):
        raise PersistenceError("Recurring sheet unavailable")


@pytest.fixture
def failing_ledger_factory():
    return FailingLedgerStorage


@pytest.fixture
def slow_ledger_factory():
    return SlowLedgerStorage


@pytest.fixture
def thread_blocking_ledger_factory():
    return ThreadBlockingLedgerStorage


@pytest.fixture
def thread_blocking_store_factory():
    return ThreadBlockingTemplateStorage


@pytest.fixture
def failing_list_store():
    return FailingListTemplateStorage([make_template()])


# =============================================================================
# FAKE GSPREAD
# =============================================================================

class FakeWorksheet:
    """The subset of gspread.Worksheet the storage layer uses."""

    def __init__(self, title: str, rows=None):
        self.title = title
        self.rows = [list(r) for r in rows or []]
        self.append_calls = []
        self.update_calls = []

    def get_all_values(self):
        return [list(r) for r in self.rows]

    def row_values(self, row: int):
        if row - 1 >= len(self.rows):
            return []
        values = list(self.rows[row - 1])
        while values and values[-1] == "":
            values.pop()
        return values

    def append_row(self, values, value_input_option="RAW"):
        self.append_calls.append((list(values), value_input_option))
        self.rows.append([str(v) for v in values])
        row_number = len(self.rows)
        return {"updates": {"updatedRange": f"'{self.title}'!A{row_number}:N{row_number}"}}

    def update(self, range_name=None, values=None, value_input_option="RAW"):
        self.update_calls.append((range_name, values, value_input_option))
        row, col = a1_to_rowcol(range_name)
        target = self.rows[row - 1]
        while len(target) < col:
            target.append("")
        target[col - 1] = values[0][0]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient with one fake worksheet per sheet."""

    def __init__(self, recurring_rows=None):
        self.recurring = FakeWorksheet(
            "Recurring", [RECURRING_COLUMNS] + [list(r) for r in recurring_rows or []]
        )
        self.transactions = FakeWorksheet("Transactions", [TRANSACTION_COLUMNS])
        self.audit = FakeWorksheet("AuditLog", [AUDIT_COLUMNS])

    def get_recurring_sheet(self):
        return self.recurring

    def get_transactions_sheet(self):
        return self.transactions

    def get_audit_sheet(self):
        return self.audit


@pytest.fixture
def sheet_rows():
    """Three hand-typed Recurring rows in the sheet's own formats."""
    return [
        ["Rent", "monthly", "Housing", "Rent", "2024-01-01", "1.234,56", "",
         "Checking", "", "1", "", "", "", "TRUE"],
        ["Gym", "Weekly", "Health", "", "01/01/2024", "", "$25.00",
         "Card", "Downtown", "", "1", "", "2024-01-08", "true"],
        ["Broken", "fortnightly", "", "", "not a date", "10", "",
         "", "", "", "", "", "", "FALSE"],
    ]


@pytest.fixture
def fake_sheets(sheet_rows):
    return FakeSheetsClient(sheet_rows)
