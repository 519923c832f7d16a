"""
Google Sheets Storage Implementation

DESIGN DECISION: the household spreadsheet is a supported backend because:
1. Housemates can read the ledger directly in Sheets
2. Years of bill history already live there
3. No server needed

Layout:
- Metadata!A:B     key / JSON rows (housemates, billCategories, balances,
                   availableYears)
- ManualBills      one bill per row in the native column layout, or (older
                   spreadsheets) the month/vendor/per-housemate grid
- BillHistories    imported history rows (read only)
- AuditLog         append-only audit events

TRADEOFFS:
- No transactions (every write is a single range update or append)
- Filtering happens in Python after reading the whole sheet
- Rows that fail to parse are reported and skipped, never guessed at

Credentials come from a service account file, or from a service account
key wrapped under a PIN (see utility_splitter.crypto.pin).
"""

import json
from datetime import datetime
from typing import Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from utility_splitter.config import GoogleSheetsSettings, get_settings
from utility_splitter.crypto.pin import unwrap_secret
from utility_splitter.models.audit import AuditEvent, AuditEventType, AuditSeverity
from utility_splitter.models.ledger import (
    Bill,
    BillCategory,
    Housemate,
    LedgerMeta,
)
from utility_splitter.models.rows import (
    NATIVE_COLUMNS,
    ParsedSheet,
    bill_to_native_row,
    parse_history_sheet,
    parse_manual_sheet,
    parse_native_sheet,
)
from utility_splitter.services.storage.interface import (
    AuditStorageInterface,
    AuthExpiredError,
    LedgerStoreInterface,
    NotFoundError,
    RemoteUnavailableError,
    StorageError,
)


logger = structlog.get_logger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.readonly",
]

AUDIT_COLUMNS = [
    "event_id", "timestamp", "event_type", "severity", "entity_type",
    "entity_id", "description", "details", "error_message", "is_user_action",
]

META_FIELDS = {
    "housemates": "housemates",
    "billCategories": "bill_categories",
    "balances": "balances",
    "availableYears": "available_years",
}


def _api_status(error: gspread.exceptions.APIError) -> Optional[int]:
    code = getattr(error, "code", None)
    if code is None and getattr(error, "response", None) is not None:
        code = error.response.status_code
    return code


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(
        self,
        settings: Optional[GoogleSheetsSettings] = None,
        credentials_info: Optional[dict] = None,
    ):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._credentials_info = credentials_info

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @classmethod
    def from_wrapped_key(
        cls,
        token: str,
        pin: str,
        settings: Optional[GoogleSheetsSettings] = None,
    ) -> "GoogleSheetsClient":
        """
        Build a client from a PIN-wrapped service account key.

        Raises:
            DecryptionFailed: wrong PIN or damaged token
        """
        return cls(settings=settings, credentials_info=json.loads(unwrap_secret(token, pin)))

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
                if self._credentials_info is not None:
                    credentials = Credentials.from_service_account_info(
                        self._credentials_info,
                        scopes=SCOPES,
                    )
                else:
                    credentials = Credentials.from_service_account_file(
                        self._settings.credentials_path,
                        scopes=SCOPES,
                    )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise RemoteUnavailableError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise RemoteUnavailableError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def reset(self) -> None:
        """Drop the cached client so the next call re-authorizes."""
        self._client = None
        self._spreadsheet = None

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise NotFoundError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, header: Optional[list[str]], cols: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=1000, cols=cols)
            if header:
                sheet.append_row(header)
        return sheet

    def get_metadata_sheet(self) -> gspread.Worksheet:
        """Get or create the Metadata worksheet."""
        return self._get_or_create(self._settings.metadata_sheet_name, None, 2)

    def get_bills_sheet(self) -> gspread.Worksheet:
        """Get or create the bills worksheet."""
        return self._get_or_create(
            self._settings.bills_sheet_name,
            NATIVE_COLUMNS,
            len(NATIVE_COLUMNS),
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the audit log worksheet."""
        return self._get_or_create(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            len(AUDIT_COLUMNS),
        )

    def get_history_sheet(self) -> Optional[gspread.Worksheet]:
        """The history worksheet, if this spreadsheet has one."""
        try:
            return self.get_spreadsheet().worksheet(self._settings.history_sheet_name)
        except gspread.WorksheetNotFound:
            return None


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of ledger storage.

    Sheets calls are retried once after re-authorizing when Google answers
    401; any other API failure is RemoteUnavailableError.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _call(self, operation, *args, **kwargs):
        """Run a sheets operation, re-authorizing once on 401."""
        for attempt in (1, 2):
            try:
                return operation(*args, **kwargs)
            except gspread.exceptions.APIError as e:
                status = _api_status(e)
                if status == 401 and attempt == 1:
                    logger.info("sheets_auth_refresh")
                    self._client.reset()
                    continue
                if status == 401:
                    raise RemoteUnavailableError(
                        f"Google Sheets rejected credentials after refresh: {e}"
                    ) from AuthExpiredError(str(e))
                raise RemoteUnavailableError(f"Google Sheets API error: {e}") from e

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def _read_meta(self) -> Optional[LedgerMeta]:
        rows = self._client.get_metadata_sheet().get_all_values()
        fields = {}
        for row in rows:
            if len(row) < 2 or row[0] not in META_FIELDS:
                continue
            try:
                fields[META_FIELDS[row[0]]] = json.loads(row[1])
            except json.JSONDecodeError as e:
                raise StorageError(f"Metadata row {row[0]!r} is not JSON: {e}")
        if not fields:
            return None
        try:
            return LedgerMeta.model_validate(fields)
        except ValueError as e:
            raise StorageError(f"Metadata is invalid: {e}")

    def _write_meta(self, meta: LedgerMeta) -> None:
        wire = meta.to_wire()
        rows = [[name, json.dumps(wire[name])] for name in META_FIELDS]
        sheet = self._client.get_metadata_sheet()
        sheet.clear()
        sheet.update(range_name="A1", values=rows)

    async def load_meta(self) -> Optional[LedgerMeta]:
        return self._call(self._read_meta)

    async def save_meta(self, meta: LedgerMeta) -> None:
        self._call(self._write_meta, meta)

    # ------------------------------------------------------------------
    # Bills
    # ------------------------------------------------------------------

    def _read_bill_sheets(self) -> tuple[ParsedSheet, ParsedSheet, list[str]]:
        """(bills sheet, history sheet, grid housemate names)."""
        name = self._client.settings.bills_sheet_name
        values = self._client.get_bills_sheet().get_all_values()

        grid_names: list[str] = []
        if values and values[0] and str(values[0][0]).strip().lower() != "id":
            bills, grid_names = parse_manual_sheet(name, values)
        else:
            bills = parse_native_sheet(name, values)

        history = ParsedSheet()
        history_sheet = self._client.get_history_sheet()
        if history_sheet is not None:
            history = parse_history_sheet(
                self._client.settings.history_sheet_name,
                history_sheet.get_all_values(),
            )

        for error in [*bills.errors, *history.errors]:
            logger.warning(
                "sheet_row_rejected",
                sheet=error.sheet,
                row=error.row_number,
                reason=error.reason,
            )
        return bills, history, grid_names

    async def list_bills(self, year: Optional[str] = None) -> list[Bill]:
        bills_sheet, history, _ = self._call(self._read_bill_sheets)
        bills = [*history.bills(), *bills_sheet.bills()]
        if year is not None:
            bills = [bill for bill in bills if bill.year == year]
        bills.sort(key=lambda b: (b.bill_date, b.created_at), reverse=True)
        return bills

    async def discover_roster(self) -> tuple[list[Housemate], list[BillCategory]]:
        """
        Housemates named in the grid header and categories used in history.

        Used to seed a ledger from an existing spreadsheet.
        """
        _, history, grid_names = self._call(self._read_bill_sheets)
        housemates = [Housemate(id=name, name=name) for name in grid_names]
        seen: dict[str, BillCategory] = {}
        for bill in history.bills():
            seen.setdefault(bill.category_id, BillCategory(id=bill.category_id, name=bill.category_id))
        return housemates, list(seen.values())

    def _find_row(self, sheet: gspread.Worksheet, bill_id: str) -> Optional[int]:
        for idx, row in enumerate(sheet.get_all_values(), start=1):
            if row and row[0] == bill_id:
                return idx
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_bill(self, bill: Bill) -> None:
        sheet = self._call(self._client.get_bills_sheet)
        self._call(sheet.append_row, bill_to_native_row(bill), value_input_option="RAW")

    async def update_bill(self, bill: Bill) -> None:
        sheet = self._call(self._client.get_bills_sheet)
        idx = self._call(self._find_row, sheet, bill.id)
        if idx is None:
            raise NotFoundError(f"Bill not found: {bill.id}")
        self._call(
            sheet.update,
            range_name=f"A{idx}",
            values=[bill_to_native_row(bill)],
            value_input_option="RAW",
        )

    async def delete_bill(self, bill_id: str) -> bool:
        sheet = self._call(self._client.get_bills_sheet)
        idx = self._call(self._find_row, sheet, bill_id)
        if idx is None:
            return False
        self._call(sheet.delete_rows, idx)
        return True


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
            event_id=safe_get(0),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            description=safe_get(6),
            details=json.loads(safe_get(7)) if safe_get(7) else {},
            error_message=safe_get(8) or None,
            is_user_action=safe_get(9).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        sheet = self._client.get_audit_sheet()
        sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
        return True

    async def recent_events(self, limit: int = 50) -> list[AuditEvent]:
        rows = self._client.get_audit_sheet().get_all_values()[1:]
        events = []
        for row in reversed(rows):
            if len(events) >= limit:
                break
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("audit_row_rejected", error=str(e))
        return events
