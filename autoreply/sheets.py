"""
Google Sheets log store.

Every inbound message is appended as one row of a single sheet (tab).
The same sheet doubles as the "have we seen this sender" lookup: the
phone column is scanned on each request.

Only append_row reports failures to the caller. Everything else degrades
to a default (no headers, sender unknown, Sheet1) because the sheet is an
audit trail and must never take the auto-reply down with it.
"""

import base64
import binascii
import functools
import json
import logging
import os
from typing import Any, Callable, List, Optional, Sequence, Union

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from autoreply.config import Settings
from autoreply.errors import AuthenticationError, AutoReplyError, ConnectivityError, WriteError
from autoreply.layout import STANDARD_LAYOUT, SheetLayout, column_letter, get_layout
from autoreply.metrics import record_sheets_operation
from autoreply.schemas import AppendResult, LogRow
from autoreply.utils import normalize_identity

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
DEFAULT_SHEET_NAME = "Sheet1"

# Transport-level failures surfaced by google-auth / httplib2
TRANSPORT_ERRORS = (TransportError, httplib2.HttpLib2Error, OSError)


# =============================================================================
# Credentials
# =============================================================================

def parse_credentials_json(raw: str) -> dict:
    """
    Decode service-account JSON given either base64-encoded or as-is.

    Raises:
        AuthenticationError: if neither form parses to a JSON object
    """
    text = raw.strip()
    try:
        decoded = base64.b64decode(text, validate=True).decode("utf-8")
        info = json.loads(decoded)
        logger.debug("Service account JSON decoded from base64")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        try:
            info = json.loads(text)
        except ValueError as e:
            raise AuthenticationError(
                "GOOGLE_CREDENTIALS_JSON is neither base64-encoded nor raw JSON"
            ) from e

    if not isinstance(info, dict):
        raise AuthenticationError("GOOGLE_CREDENTIALS_JSON must hold a JSON object")
    return info


def load_credentials(
    credentials_json: Optional[str] = None,
    credentials_path: Optional[str] = None,
) -> service_account.Credentials:
    """
    Load service-account credentials from the env var or the key file.

    The env var wins when both are set.
    """
    if credentials_json:
        info = parse_credentials_json(credentials_json)
        try:
            creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
        except (ValueError, KeyError) as e:
            raise AuthenticationError(f"Invalid service account JSON: {e}") from e
        logger.info("Google credentials loaded from environment variable")
        return creds

    if not credentials_path or not os.path.exists(credentials_path):
        raise AuthenticationError(
            f"No Google credentials: GOOGLE_CREDENTIALS_JSON is unset and key file "
            f"{credentials_path!r} does not exist"
        )

    try:
        creds = service_account.Credentials.from_service_account_file(credentials_path, scopes=SCOPES)
    except (ValueError, KeyError, OSError) as e:
        raise AuthenticationError(f"Invalid service account key file {credentials_path!r}: {e}") from e
    logger.info(f"Google credentials loaded from {credentials_path}")
    return creds


# =============================================================================
# Fail-open Policy
# =============================================================================

def non_critical(operation: str, default: Any = None):
    """
    Mark a store operation as non-critical: on any exception, log it and
    return `default` (called first if it is a factory such as `list`).
    """
    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                logger.warning(f"Sheets {operation} failed, continuing with default: {e}")
                record_sheets_operation(operation, ok=False)
                return default() if callable(default) else default
            record_sheets_operation(operation, ok=True)
            return result
        return wrapper
    return decorator


def _status(error: HttpError) -> Optional[int]:
    try:
        return int(error.resp.status)
    except (AttributeError, TypeError, ValueError):
        return None


def _quote_sheet(name: str) -> str:
    return "'" + name.replace("'", "''") + "'"


# =============================================================================
# Store
# =============================================================================

class SheetsLogStore:
    """
    Append-only message log kept in one sheet of a Google spreadsheet.

    The API client and the resolved sheet name are computed on first use
    and reused afterwards. Concurrent first calls may both compute them;
    the results are equivalent so the last write simply wins.
    """

    def __init__(
        self,
        spreadsheet_id: str,
        layout: SheetLayout = STANDARD_LAYOUT,
        sheet_name: Optional[str] = None,
        credentials_loader: Optional[Callable[[], Any]] = None,
        service: Any = None,
    ):
        self.spreadsheet_id = spreadsheet_id
        self.layout = layout
        self._configured_sheet = sheet_name
        self._credentials_loader = credentials_loader or load_credentials
        self._credentials = None
        self._service = service
        self._sheet_name: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SheetsLogStore":
        return cls(
            spreadsheet_id=settings.SPREADSHEET_ID,
            layout=get_layout(settings.SHEET_LAYOUT),
            sheet_name=settings.SHEET_NAME,
            credentials_loader=functools.partial(
                load_credentials,
                settings.GOOGLE_CREDENTIALS_JSON,
                settings.GOOGLE_CREDENTIALS_PATH,
            ),
        )

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._service is not None

    def ensure_ready(self):
        """
        Build the Sheets v4 client, validating the credentials first.

        Raises:
            AuthenticationError: credentials missing, malformed or rejected
            ConnectivityError: the token endpoint could not be reached
        """
        if self._service is not None:
            return self._service

        if not self.spreadsheet_id:
            record_sheets_operation("ready", ok=False)
            raise AuthenticationError("SPREADSHEET_ID is not configured")

        try:
            creds = self._credentials_loader()
            creds.refresh(GoogleAuthRequest())
        except AuthenticationError:
            record_sheets_operation("ready", ok=False)
            raise
        except RefreshError as e:
            record_sheets_operation("ready", ok=False)
            raise AuthenticationError(f"Google rejected the service account credentials: {e}") from e
        except TRANSPORT_ERRORS as e:
            record_sheets_operation("ready", ok=False)
            raise ConnectivityError(f"Could not reach Google token endpoint: {e}") from e

        self._credentials = creds
        self._service = build("sheets", "v4", credentials=creds, cache_discovery=False)
        record_sheets_operation("ready", ok=True)
        logger.info("Google Sheets service initialized")
        return self._service

    def _spreadsheets(self):
        return self.ensure_ready().spreadsheets()

    # -------------------------------------------------------------------------
    # Sheet resolution
    # -------------------------------------------------------------------------

    def resolve_target_sheet(self) -> str:
        """
        Name of the tab all operations target: SHEET_NAME if configured,
        else the first tab, else "Sheet1". Never raises.
        """
        if self._sheet_name is None:
            self._sheet_name = (
                self._configured_sheet
                or self._first_sheet_title()
                or DEFAULT_SHEET_NAME
            )
            logger.info(f'Using sheet: "{self._sheet_name}"')
        return self._sheet_name

    @non_critical("resolve_sheet", default=None)
    def _first_sheet_title(self) -> Optional[str]:
        response = self._spreadsheets().get(
            spreadsheetId=self.spreadsheet_id,
            fields="sheets.properties.title",
        ).execute()
        sheets = response.get("sheets") or []
        if not sheets:
            return None
        return sheets[0].get("properties", {}).get("title")

    def _qualified(self, a1_range: str) -> str:
        return f"{_quote_sheet(self.resolve_target_sheet())}!{a1_range}"

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _read_values(self, a1_range: str) -> List[List[Any]]:
        """
        Read a range of the target sheet. If the sheet-qualified range is
        rejected as a bad request, retry once against the default sheet.
        """
        values = self._spreadsheets().values()
        try:
            response = values.get(
                spreadsheetId=self.spreadsheet_id,
                range=self._qualified(a1_range),
            ).execute()
        except HttpError as e:
            if _status(e) != 400:
                raise
            logger.warning(f"Range rejected for sheet {self.resolve_target_sheet()!r}, retrying {a1_range} unqualified")
            response = values.get(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range,
            ).execute()
        return response.get("values", [])

    @non_critical("read_headers", default=list)
    def read_header_row(self) -> List[str]:
        """
        Current header labels, or [] when the sheet has none.

        Row 1 is the header row when it holds anything. A sheet whose first
        row is blank may carry its labels in row 2 instead; that row only
        counts if it contains one of the layout's labels.
        """
        return self._read_header_row()

    def _read_header_row(self) -> List[str]:
        # Raises on read failure, so callers can tell "no header" from "unknown"
        rows = self._read_values(self.layout.row_range(1, 2))
        first = rows[0] if rows else []
        if any(str(v).strip() for v in first):
            return [str(v) for v in first]

        second = rows[1] if len(rows) > 1 else []
        labels = {normalize_identity(label) for label in self.layout.header_labels()}
        if any(normalize_identity(str(v)) in labels for v in second):
            return [str(v) for v in second]
        return []

    @non_critical("sender_exists", default=False)
    def sender_exists(self, identity: str) -> bool:
        """
        True if any logged row has this sender in the phone column.

        Comparison is on trimmed, lower-cased strings. Read failures count
        as "not found" so a new sender is never left without a reply.
        """
        wanted = normalize_identity(identity)
        if not wanted:
            return False

        column = self.layout.phone_column
        header = normalize_identity(column.header)
        rows = self._read_values(f"{column.letter}2:{column.letter}")

        for row in rows:
            if not row:
                continue
            cell = normalize_identity(str(row[0]))
            if cell == header:
                continue
            if cell == wanted:
                logger.debug(f"Sender {identity} found in column {column.letter}")
                return True
        return False

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def append_row(self, row: Union[LogRow, Sequence[Any]]) -> AppendResult:
        """
        Append one row below the existing data, laid out per self.layout.

        Args:
            row: LogRow or the 5-field [phone, message, timestamp, date, time]

        Raises:
            WriteError: the provider rejected the append or was unreachable
            AuthenticationError: the store has no usable credentials or spreadsheet
            ConnectivityError: the token refresh could not reach Google
        """
        if not isinstance(row, LogRow):
            row = LogRow.from_values(row)

        try:
            spreadsheets = self._spreadsheets()
        except AutoReplyError:
            record_sheets_operation("append", ok=False)
            raise

        a1_range = self._qualified(self.layout.column_range())
        try:
            response = spreadsheets.values().append(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range,
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body={"values": [self.layout.render(row)]},
            ).execute()
        except HttpError as e:
            record_sheets_operation("append", ok=False)
            raise WriteError(f"Append to {a1_range} failed: {e}", status_code=_status(e)) from e
        except TRANSPORT_ERRORS as e:
            record_sheets_operation("append", ok=False)
            raise WriteError(f"Append to {a1_range} failed: {e}") from e

        updates = response.get("updates", {})
        result = AppendResult(
            updated_range=updates.get("updatedRange"),
            updated_cells=updates.get("updatedCells", 0),
        )
        record_sheets_operation("append", ok=True)
        logger.info(f"Row appended to Google Sheets: {result.updated_cells} cells at {result.updated_range}")
        return result

    @non_critical("ensure_headers", default=False)
    def ensure_header_row(self, expected: Optional[Sequence[str]] = None) -> bool:
        """
        Write the header labels into row 1 if the sheet has no header row.

        A populated header row is never overwritten, whether or not it
        carries the expected labels. If the current row cannot be read,
        nothing is written. Returns True only if a write happened.
        """
        expected = list(expected) if expected is not None else self.layout.headers()
        existing = self._read_header_row()

        if existing:
            wanted = {normalize_identity(label) for label in expected if label}
            if wanted & {normalize_identity(v) for v in existing}:
                logger.info("Headers already exist in Google Sheets")
            else:
                logger.warning(f"Header row holds unexpected labels {existing}, leaving it untouched")
            return False

        self._write_header(expected)
        logger.info("Headers added to Google Sheets")
        return True

    def _write_header(self, labels: List[str]) -> None:
        last = column_letter(self.layout.first_index + len(labels) - 1)
        a1_range = f"{self.layout.first_column}1:{last}1"
        values = self._spreadsheets().values()
        body = {"values": [labels]}

        try:
            values.update(
                spreadsheetId=self.spreadsheet_id,
                range=self._qualified(a1_range),
                valueInputOption="USER_ENTERED",
                body=body,
            ).execute()
        except HttpError as e:
            status = _status(e)
            if status == 403:
                email = getattr(self._credentials, "service_account_email", None) or "<service account>"
                logger.error(
                    f"Permission denied on spreadsheet {self.spreadsheet_id}. "
                    f"Share it with {email} as Editor: "
                    f"https://docs.google.com/spreadsheets/d/{self.spreadsheet_id}/edit"
                )
                raise
            if status != 400:
                raise
            logger.warning(f"Header range rejected, retrying {a1_range} unqualified")
            values.update(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range,
                valueInputOption="USER_ENTERED",
                body=body,
            ).execute()
