"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the durable backend because:
1. The user can open their ledger data directly in Sheets
2. Nothing to provision beyond a service account
3. Sheets keeps revision history of every write

LAYOUT: The ledger sheet holds one row per user key:
    [user_key, updated_at, chunk_count, chunk_1, chunk_2, ...]
The ledger document is JSON and is split across cells because a single
Sheets cell holds at most 50,000 characters.

TRADEOFFS:
- Sheets has no change feed, so `subscribe` polls
- No transactions: a save rewrites the user's row in one range update
"""

import asyncio
import json
from datetime import datetime
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import retry, stop_after_attempt, wait_exponential

from budget_ledger.config import GoogleSheetsSettings, get_settings
from budget_ledger.engine.migration import load_ledger_document
from budget_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from budget_ledger.models.ledger import LedgerState
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    ErrorCallback,
    PersistenceInterface,
    StorageError,
    Unsubscribe,
    UpdateCallback,
    serialize_state,
)

logger = structlog.get_logger(__name__)

# Sheets rejects cells longer than 50,000 characters
CELL_CHUNK_SIZE = 45_000

LEDGER_COLUMNS = [
    "user_key",
    "updated_at",
    "chunk_count",
    "ledger_json",
]

# Audit sheet header, one column per AuditEvent field
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "month",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Thin wrapper over gspread shared by both storage classes.

    Authenticates lazily and retries transient API failures.
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
        Authorise a gspread client.

        Credentials come from the service account JSON in settings.
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
        """Open the spreadsheet named by GOOGLE_SHEETS_SPREADSHEET_ID."""
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

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # First use: add the worksheet and its header row
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_ledger_sheet(self) -> gspread.Worksheet:
        """Get or create the ledger worksheet."""
        return self._get_or_create_sheet(self._settings.ledger_sheet_name, LEDGER_COLUMNS, 100)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """The audit worksheet, created on first use."""
        return self._get_or_create_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


def split_document(document: str, size: int = CELL_CHUNK_SIZE) -> list[str]:
    """Split a JSON document into cell-sized pieces."""
    return [document[i:i + size] for i in range(0, len(document), size)] or [""]


class GoogleSheetsPersistence(PersistenceInterface):
    """
    Google Sheets implementation of ledger persistence.

    Each user's ledger is one row; see the module docstring for the layout.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        if poll_interval is None:
            poll_interval = get_settings().ledger.remote_poll_interval_seconds
        self._poll_interval = poll_interval

    def _ledger_to_row(self, user_key: str, state: LedgerState) -> list:
        document = json.dumps(serialize_state(state), separators=(",", ":"))
        chunks = split_document(document)
        return [user_key, state.updated_at.isoformat(), str(len(chunks)), *chunks]

    def _row_to_ledger(self, row: list) -> Optional[LedgerState]:
        try:
            count = int(row[2])
        except (IndexError, ValueError):
            raise StorageError(f"Malformed ledger row for {row[0] if row else '?'}")
        document = "".join(row[3:3 + count])
        if not document:
            return None
        try:
            return load_ledger_document(json.loads(document))
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt ledger document for {row[0]}: {e}")

    def _find_row(self, sheet: gspread.Worksheet, user_key: str) -> tuple[Optional[int], Optional[list]]:
        """1-based sheet row index and values for a user, or (None, None)."""
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if row and row[0] == user_key:
                return idx, row
        return None, None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _fetch_row(self, user_key: str) -> Optional[list]:
        sheet = self._client.get_ledger_sheet()
        _, row = self._find_row(sheet, user_key)
        return row

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _write_row(self, user_key: str, new_row: list) -> None:
        sheet = self._client.get_ledger_sheet()
        idx, old_row = self._find_row(sheet, user_key)

        if idx is None:
            sheet.append_row(new_row, value_input_option="RAW")
            return

        # Blank out chunk cells left over from a longer document
        width = max(len(new_row), len(old_row or []))
        padded = new_row + [""] * (width - len(new_row))
        sheet.update(
            range_name=f"A{idx}:{rowcol_to_a1(idx, width)}",
            values=[padded],
            value_input_option="RAW",
        )

    async def load(self, user_key: str) -> Optional[LedgerState]:
        """Load a user's ledger from Google Sheets."""
        try:
            row = self._fetch_row(user_key)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to load ledger: {e}")

        if row is None:
            return None
        return self._row_to_ledger(row)

    async def save(self, user_key: str, state: LedgerState) -> bool:
        """Write a user's ledger to Google Sheets, replacing any earlier row."""
        try:
            self._write_row(user_key, self._ledger_to_row(user_key, state))
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save ledger: {e}")

    def subscribe(
        self,
        user_key: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """
        Poll the user's row and report every change of its `updated_at`.

        Must be called from a running event loop.
        """
        task = asyncio.get_running_loop().create_task(
            self._poll(user_key, on_update, on_error)
        )
        return task.cancel

    async def _poll(
        self,
        user_key: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        last_seen: Optional[datetime] = None
        while True:
            try:
                state = await self.load(user_key)
            except StorageError as e:
                logger.warning("ledger_poll_failed", user_key=user_key, error=str(e))
                if on_error is not None:
                    on_error(e)
            else:
                if state is not None and state.updated_at != last_seen:
                    last_seen = state.updated_at
                    on_update(state)
            await asyncio.sleep(self._poll_interval)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Audit trail kept in its own worksheet.

    Rows are only ever appended.
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
            month=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the ledger flow
            logger.warning("audit_event_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    def _read_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_audit_sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError):
                logger.debug("audit_row_skipped", event_id=row[0])
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._read_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
