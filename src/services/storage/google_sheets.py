"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the storage backend because:
1. The household already keeps its ledger in a spreadsheet
2. Non-technical users can view and edit templates directly
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions: the schedule compare-and-swap is a read-then-write on a
  single row. It narrows the window between two processes, but only the
  engine's in-process lock makes it airtight; run one scheduler per sheet.
- Limited query capabilities (we filter in Python)
- gspread is blocking, so every call runs in a worker thread; this keeps
  the engine's per-step timeouts effective.

Worksheet layouts are fixed because people edit these sheets by hand:
- Recurring: 14 columns A-N (see RECURRING_COLUMNS); ISO dates; Active as TRUE/FALSE
- Transactions: 10 columns A-J (see TRANSACTION_COLUMNS)
- AuditLog: 11 columns (see AUDIT_COLUMNS)
"""

import asyncio
import json
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import GoogleSheetsSettings, get_settings
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
from src.models.recurring import Frequency, LedgerEntry, RecurringTemplate
from src.scheduling.recurrence import parse_anchor_date, with_projection
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


logger = structlog.get_logger(__name__)


# Column layout of the Recurring sheet (order is part of the contract)
RECURRING_COLUMNS = [
    "Description",
    "Frequency",
    "Category",
    "Subcategory",
    "Start Date",
    "Amount (EUR)",
    "Amount (USD)",
    "Account",
    "Notes",
    "Day of Month",
    "Day of Week",
    "End Date",
    "Last Processed",
    "Active",
]
COL_LAST_PROCESSED = 13  # 1-based, column M
COL_ACTIVE = 14          # 1-based, column N

# Column layout of the Transactions sheet
TRANSACTION_COLUMNS = [
    "Date",
    "Description",
    "Category Select",
    "Category",
    "Subcategory",
    "Amount (EUR)",
    "Amount (USD)",
    "Account",
    "Notes",
    "Recurring ID",
]

# Column layout of the Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

TEMPLATE_ID_PATTERN = re.compile(r"^recurring-(\d+)$")
UPDATED_RANGE_ROW = re.compile(r"![A-Z]+(\d+)")

# Transient API failures are retried; everything else surfaces immediately
sheets_retry = retry(
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


# =============================================================================
# CELL PARSING HELPERS
# =============================================================================

def parse_amount(value) -> Optional[Decimal]:
    """
    Parse a currency cell into a Decimal.

    Accepts European (1.234,56), US (1,234.56) and plain (1234.5) formats,
    with or without a currency symbol. Returns None for blank or garbage.
    """
    if value is None:
        return None
    text = re.sub(r"[$€£¥\s]", "", str(value))
    if not text:
        return None

    if re.fullmatch(r"-?\d{1,3}(\.?\d{3})*,\d+", text):
        text = text.replace(".", "").replace(",", ".")
    elif re.fullmatch(r"-?\d{1,3}(,?\d{3})*\.\d+", text):
        text = text.replace(",", "")
    else:
        text = re.sub(r"[^0-9.\-]", "", text)

    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def parse_int(value) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_bool(value) -> bool:
    return str(value).strip().lower() in ("true", "1")


def format_date(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def format_amount(value: Optional[Decimal]) -> str:
    return str(value) if value is not None else ""


def parse_template_row_number(template_id: str) -> int:
    """Row number encoded in a template ID ('recurring-5' -> 5)."""
    match = TEMPLATE_ID_PATTERN.match(template_id or "")
    if not match:
        raise NotFoundError(f"Invalid recurring template ID format: {template_id}")
    return int(match.group(1))


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        headers: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            logger.info("creating_worksheet", title=title)
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(headers),
            )
            sheet.append_row(headers, value_input_option="RAW")
        return sheet

    def get_recurring_sheet(self) -> gspread.Worksheet:
        """Get or create the Recurring worksheet."""
        return self._get_or_create_sheet(
            self._settings.recurring_sheet_name, RECURRING_COLUMNS
        )

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsTemplateStorage(TemplateStoreInterface):
    """
    Google Sheets implementation of template storage.

    One template per row of the Recurring sheet. A template's ID is its
    row number ('recurring-<row>'), so rows must not be re-ordered while
    a batch runs.

    The full template list is cached after the first read. Every write
    drops the cache; callers can drop it too with invalidate_cache().
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._cache: Optional[list[RecurringTemplate]] = None

    def _template_to_row(self, template: RecurringTemplate) -> list:
        """Convert a template to a 14-column spreadsheet row."""
        return [
            template.description,
            template.frequency.value if template.frequency else template.frequency_text,
            template.category,
            template.subcategory,
            format_date(template.start_date),
            format_amount(template.amount_primary),
            format_amount(template.amount_secondary),
            template.account,
            template.notes,
            str(template.day_of_month) if template.day_of_month is not None else "",
            str(template.day_of_week) if template.day_of_week is not None else "",
            format_date(template.end_date),
            format_date(template.last_processed),
            "TRUE" if template.active else "FALSE",
        ]

    def _row_to_template(self, row: list, row_number: int) -> RecurringTemplate:
        """Convert a spreadsheet row to a template, leniently."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        template_id = f"recurring-{row_number}"

        frequency = Frequency.parse(safe_get(1))
        if frequency is None:
            logger.warning("unknown_frequency", template_id=template_id, value=safe_get(1))

        start_date = parse_anchor_date(safe_get(4))
        if start_date is None:
            logger.warning("invalid_anchor_date", template_id=template_id, value=safe_get(4))

        template = RecurringTemplate(
            id=template_id,
            description=safe_get(0),
            frequency=frequency,
            frequency_text=safe_get(1),
            category=safe_get(2),
            subcategory=safe_get(3),
            start_date=start_date,
            amount_primary=parse_amount(safe_get(5)),
            amount_secondary=parse_amount(safe_get(6)),
            account=safe_get(7),
            notes=safe_get(8),
            day_of_month=parse_int(safe_get(9)),
            day_of_week=parse_int(safe_get(10)),
            end_date=parse_anchor_date(safe_get(11)),
            last_processed=parse_anchor_date(safe_get(12)),
            active=parse_bool(safe_get(13)),
        )
        return with_projection(template)

    @sheets_retry
    def _read_all_rows(self) -> list[list]:
        return self._client.get_recurring_sheet().get_all_values()

    @sheets_retry
    def _read_row(self, row_number: int) -> list:
        return self._client.get_recurring_sheet().row_values(row_number)

    async def list_templates(self) -> list[RecurringTemplate]:
        """List all templates (cached)."""
        if self._cache is not None:
            return list(self._cache)

        try:
            all_rows = await asyncio.to_thread(self._read_all_rows)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to list recurring templates: {e}")

        templates = []
        for row_number, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if not any(cell.strip() for cell in row if isinstance(cell, str)):
                continue  # Skip empty rows
            templates.append(self._row_to_template(row, row_number))

        self._cache = templates
        return list(templates)

    async def get_template(
        self,
        template_id: str,
        fresh: bool = False,
    ) -> Optional[RecurringTemplate]:
        """Retrieve a template by its ID."""
        try:
            row_number = parse_template_row_number(template_id)
        except NotFoundError:
            return None

        if not fresh:
            for template in await self.list_templates():
                if template.id == template_id:
                    return template
            return None

        try:
            row = await asyncio.to_thread(self._read_row, row_number)
        except Exception as e:
            raise PersistenceError(f"Failed to read template {template_id}: {e}")

        if not row or not any(cell.strip() for cell in row):
            return None
        return self._row_to_template(row, row_number)

    async def add_template(self, template: RecurringTemplate) -> RecurringTemplate:
        """Append a template row and return it with its row-based ID."""
        row = self._template_to_row(template)

        def _append() -> int:
            sheet = self._client.get_recurring_sheet()
            response = sheet.append_row(row, value_input_option="RAW")
            updated_range = (response or {}).get("updates", {}).get("updatedRange", "")
            match = UPDATED_RANGE_ROW.search(updated_range)
            if match:
                return int(match.group(1))
            return len(sheet.get_all_values())

        try:
            row_number = await asyncio.to_thread(_append)
        except Exception as e:
            raise PersistenceError(f"Failed to add recurring template: {e}")
        finally:
            self.invalidate_cache()

        return with_projection(template.model_copy(update={"id": f"recurring-{row_number}"}))

    async def update_template_schedule(
        self,
        template_id: str,
        last_processed: Optional[date],
        next_due: Optional[date],
        expected_last_processed=NO_EXPECTATION,
    ) -> None:
        """
        Write Last Processed (column M).

        next_due has no column: it is recomputed whenever the row is read.
        """
        row_number = parse_template_row_number(template_id)

        def _compare_and_set() -> None:
            sheet = self._client.get_recurring_sheet()
            row = sheet.row_values(row_number)
            if not row or not any(cell.strip() for cell in row):
                raise NotFoundError(f"Template not found: {template_id}")

            if expected_last_processed is not NO_EXPECTATION:
                stored_raw = row[COL_LAST_PROCESSED - 1] if len(row) >= COL_LAST_PROCESSED else ""
                stored = parse_anchor_date(stored_raw)
                if stored != expected_last_processed:
                    raise ScheduleConflictError(
                        f"Template {template_id} was processed concurrently "
                        f"(expected last processed {expected_last_processed}, "
                        f"found {stored_raw or 'blank'})"
                    )

            sheet.update(
                range_name=rowcol_to_a1(row_number, COL_LAST_PROCESSED),
                values=[[format_date(last_processed)]],
                value_input_option="RAW",
            )

        try:
            await asyncio.to_thread(_compare_and_set)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to update schedule of {template_id}: {e}")
        finally:
            self.invalidate_cache()

    async def update_template_active(self, template_id: str, active: bool) -> None:
        """Write Active (column N) as TRUE/FALSE."""
        row_number = parse_template_row_number(template_id)

        def _set_active() -> None:
            sheet = self._client.get_recurring_sheet()
            row = sheet.row_values(row_number)
            if not row or not any(cell.strip() for cell in row):
                raise NotFoundError(f"Template not found: {template_id}")
            sheet.update(
                range_name=rowcol_to_a1(row_number, COL_ACTIVE),
                values=[["TRUE" if active else "FALSE"]],
                value_input_option="RAW",
            )

        try:
            await asyncio.to_thread(_set_active)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to update status of {template_id}: {e}")
        finally:
            self.invalidate_cache()

    def invalidate_cache(self) -> None:
        self._cache = None


class GoogleSheetsLedgerStorage(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger.

    Entries are appended to the Transactions sheet with USER_ENTERED so
    amounts land as numbers the household's formulas can sum.
    Appends are never retried: a retry after an ambiguous failure could
    write the same entry twice.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _entry_to_row(self, entry: LedgerEntry) -> list:
        return [
            entry.entry_date.isoformat(),
            entry.description,
            "",  # Category Select is a sheet-side dropdown
            entry.category,
            entry.subcategory,
            format_amount(entry.amount_primary),
            format_amount(entry.amount_secondary),
            entry.account,
            entry.notes,
            entry.source_template_id or "",
        ]

    def _row_to_entry(self, row: list) -> Optional[LedgerEntry]:
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        entry_date = parse_anchor_date(safe_get(0))
        if entry_date is None:
            return None
        return LedgerEntry(
            entry_date=entry_date,
            description=safe_get(1),
            category=safe_get(3),
            subcategory=safe_get(4),
            amount_primary=parse_amount(safe_get(5)),
            amount_secondary=parse_amount(safe_get(6)),
            account=safe_get(7),
            notes=safe_get(8),
            source_template_id=safe_get(9) or None,
        )

    async def append_ledger_entry(self, entry: LedgerEntry) -> None:
        """Append one entry to the Transactions sheet."""
        row = self._entry_to_row(entry)

        def _append() -> None:
            sheet = self._client.get_transactions_sheet()
            sheet.append_row(row, value_input_option="USER_ENTERED")

        try:
            await asyncio.to_thread(_append)
        except Exception as e:
            raise PersistenceError(f"Failed to append ledger entry: {e}")

    @sheets_retry
    def _read_all_rows(self) -> list[list]:
        return self._client.get_transactions_sheet().get_all_values()

    async def list_ledger_entries(
        self,
        source_template_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        try:
            all_rows = await asyncio.to_thread(self._read_all_rows)
        except Exception as e:
            raise PersistenceError(f"Failed to list ledger entries: {e}")

        entries = []
        for row in all_rows[1:]:
            entry = self._row_to_entry(row)
            if entry is None:
                continue  # Skip malformed rows
            if source_template_id and entry.source_template_id != source_template_id:
                continue
            entries.append(entry)
        return entries


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        row = event.to_sheets_row()

        def _append() -> None:
            self._client.get_audit_sheet().append_row(row, value_input_option="RAW")

        try:
            await asyncio.to_thread(_append)
            return True
        except Exception as e:
            # Audit logging must not break a batch
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def _read_events(self, predicate) -> list[AuditEvent]:
        try:
            all_rows = await asyncio.to_thread(
                lambda: self._client.get_audit_sheet().get_all_values()[1:]
            )
        except Exception as e:
            raise PersistenceError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if row and row[0] and predicate(row):
                try:
                    events.append(self._row_to_event(row))
                except (ValueError, json.JSONDecodeError):
                    continue  # Skip malformed rows
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        return await self._read_events(
            lambda row: len(row) > 6 and row[6] == str(correlation_id)
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        return await self._read_events(
            lambda row: len(row) > 5 and row[4] == entity_type and row[5] == entity_id
        )
