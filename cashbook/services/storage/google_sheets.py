"""
Google Sheets Cloud Storage

DESIGN DECISION: Google Sheets is the cloud copy of the ledger. The
owner can open the synced keys in a browser and there is no database
to run.

TRADEOFFS:
- One row per key, the whole value JSON-encoded in a single cell.
  A cell holds at most 50,000 characters, which is plenty for a
  personal ledger but is checked before writing.
- No transactions. The latest write wins.

The local JSON store stays the source of truth; the cloud is a mirror
that other devices pull from.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from cashbook.config import get_settings
from cashbook.models.audit import AuditEvent, AuditEventType, AuditSeverity
from cashbook.services.storage.interface import (
    AuditStorageInterface,
    CloudRecord,
    CloudSyncBackend,
    ConnectionError,
    StorageError,
)


# Column mappings for the Sync sheet
SYNC_COLUMNS = [
    "user_id",
    "key",
    "data_json",
    "updated_at",
]

# Column mappings for Audit sheet
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

MAX_CELL_CHARS = 50_000


class GoogleSheetsClient:
    """Opens the ledger spreadsheet with a service account; connects lazily."""

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def user_id(self) -> str:
        return self._settings.user_id

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
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
        """The spreadsheet named by GOOGLE_SHEETS_SPREADSHEET_ID."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _worksheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_sync_sheet(self) -> gspread.Worksheet:
        """Get or create the Sync worksheet."""
        return self._worksheet(self._settings.sync_sheet_name, SYNC_COLUMNS, rows=100)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


def _parse_timestamp(value: str) -> datetime:
    stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


class GoogleSheetsSyncBackend(CloudSyncBackend):
    """
    One row per (user_id, key) in the Sync worksheet.

    The worksheet can be replaced with any object exposing gspread's
    `get_all_values`, `append_row` and `update`; tests pass a fake.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        worksheet: Optional[Any] = None,
        user_id: Optional[str] = None,
    ):
        self._client = client
        self._worksheet = worksheet
        self._user_id = user_id
        self._logger = structlog.get_logger(__name__)

    @property
    def user_id(self) -> str:
        if self._user_id is None:
            self._user_id = (self._client or GoogleSheetsClient()).user_id
        return self._user_id

    def _sheet(self):
        if self._worksheet is None:
            if self._client is None:
                self._client = GoogleSheetsClient()
            self._worksheet = self._client.get_sync_sheet()
        return self._worksheet

    def _find_row(self, rows: list[list[str]], key: str) -> Optional[int]:
        """1-based sheet row number of a key, header included."""
        for idx, row in enumerate(rows[1:], start=2):
            if len(row) >= 2 and row[0] == self.user_id and row[1] == key:
                return idx
        return None

    def _row_to_record(self, row: list[str]) -> Optional[CloudRecord]:
        try:
            return CloudRecord(
                key=row[1],
                value=json.loads(row[2]) if row[2] else None,
                updated_at=_parse_timestamp(row[3]),
            )
        except (IndexError, ValueError) as e:
            self._logger.warning("sync_row_unreadable", row=row[:2], error=str(e))
            return None

    async def upsert(self, key: str, value: Any, updated_at: datetime) -> bool:
        payload = json.dumps(value, ensure_ascii=False)
        if len(payload) > MAX_CELL_CHARS:
            raise StorageError(
                f"{key} is too large to sync ({len(payload)} > {MAX_CELL_CHARS} characters)"
            )
        await self._write_row([self.user_id, key, payload, updated_at.isoformat()])
        return True

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _write_row(self, row: list[str]) -> None:
        sheet = self._sheet()
        existing = self._find_row(sheet.get_all_values(), row[1])
        if existing is None:
            sheet.append_row(row, value_input_option="RAW")
        else:
            sheet.update(
                range_name=f"A{existing}:D{existing}",
                values=[row],
                value_input_option="RAW",
            )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def fetch(self, key: str) -> Optional[CloudRecord]:
        rows = self._sheet().get_all_values()
        idx = self._find_row(rows, key)
        if idx is None:
            return None
        return self._row_to_record(rows[idx - 1])

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def fetch_all(self) -> dict[str, CloudRecord]:
        records: dict[str, CloudRecord] = {}
        for row in self._sheet().get_all_values()[1:]:
            if len(row) < 4 or row[0] != self.user_id:
                continue
            record = self._row_to_record(row)
            if record is not None:
                records[record.key] = record
        return records


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._logger = structlog.get_logger(__name__)

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=_parse_timestamp(safe_get(1)),
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
        """Append an audit event. Failures are logged, never raised."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            self._logger.warning("audit_write_failed", event_type=event.event_type.value, error=str(e))
            return False

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        try:
            rows = self._client.get_audit_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read audit log: {e}")

        events = []
        for row in reversed(rows):
            try:
                events.append(self._row_to_event(row))
            except (ValueError, KeyError) as e:
                self._logger.warning("audit_row_unreadable", error=str(e))
                continue
            if len(events) >= limit:
                break
        return events
