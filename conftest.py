"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app import, and the
settings cache is cleared so they are picked up. Google Sheets and Twilio
are replaced with in-memory fakes.
"""

import os
import re
from types import SimpleNamespace

import httplib2
import pytest
from googleapiclient.errors import HttpError

os.environ.setdefault("ACCOUNT_SID", "ACtest00000000000000000000000000")
os.environ.setdefault("AUTH_TOKEN", "test-auth-token")
os.environ.setdefault("SPREADSHEET_ID", "test-spreadsheet")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("REPLY_MESSAGE", "Thanks for your message!")
os.environ.setdefault("DEFAULT_FROM", "whatsapp:+14155238886")

# Clear settings cache before any app imports to ensure test env vars are used
from autoreply.config import get_settings
get_settings.cache_clear()

from autoreply.messaging import TwilioMessenger
from autoreply.sheets import SheetsLogStore


def http_error(status: int, message: str = "boom") -> HttpError:
    """Build the HttpError googleapiclient raises for a given status."""
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode("utf-8")
    return HttpError(httplib2.Response({"status": str(status)}), content)


# =============================================================================
# Fake Google Sheets v4 client
# =============================================================================

_CELL = re.compile(r"^([A-Z]*)(\d*)$")


def _col_index(letters: str) -> int:
    index = 0
    for ch in letters:
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


def _col_letter(index: int) -> str:
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


class FakeRequest:
    def __init__(self, service, method, fn):
        self._service = service
        self._method = method
        self._fn = fn

    def execute(self):
        error = self._service.failures.get(self._method)
        if error is not None:
            raise error
        return self._fn()


class FakeValues:
    def __init__(self, service):
        self._service = service

    def get(self, spreadsheetId, range):
        self._service.calls.append(("values.get", range))
        return FakeRequest(self._service, "values.get", lambda: self._service._get(range))

    def append(self, spreadsheetId, range, valueInputOption, insertDataOption, body):
        self._service.calls.append(("values.append", range))
        return FakeRequest(self._service, "values.append", lambda: self._service._append(range, body["values"]))

    def update(self, spreadsheetId, range, valueInputOption, body):
        self._service.calls.append(("values.update", range))
        return FakeRequest(self._service, "values.update", lambda: self._service._update(range, body["values"]))


class FakeSpreadsheets:
    def __init__(self, service):
        self._service = service

    def get(self, spreadsheetId, fields=None):
        self._service.calls.append(("spreadsheets.get", None))
        meta = {"sheets": [{"properties": {"title": name}} for name in self._service.grids]}
        return FakeRequest(self._service, "spreadsheets.get", lambda: meta)

    def values(self):
        return FakeValues(self._service)


class FakeSheetsService:
    """
    Minimal stand-in for `build("sheets", "v4")`.

    Each sheet is a list of rows; ranges are parsed from A1 notation.
    Set `failures[method] = exc` to make that method's execute() raise.
    """

    def __init__(self, *sheet_names):
        self.grids = {name: [] for name in (sheet_names or ("Sheet1",))}
        self.calls = []
        self.failures = {}

    def spreadsheets(self):
        return FakeSpreadsheets(self)

    def rows(self, sheet=None):
        return self.grids[sheet or next(iter(self.grids))]

    def seed(self, rows, sheet=None):
        self.rows(sheet).extend([list(r) for r in rows])

    def calls_to(self, method):
        return [rng for name, rng in self.calls if name == method]

    def _parse(self, a1_range):
        if "!" in a1_range:
            sheet, a1_range = a1_range.rsplit("!", 1)
            if sheet.startswith("'") and sheet.endswith("'"):
                sheet = sheet[1:-1].replace("''", "'")
        else:
            sheet = next(iter(self.grids))
        if sheet not in self.grids:
            raise http_error(400, f"Unable to parse range: {a1_range}")

        start, _, end = a1_range.partition(":")
        m0, m1 = _CELL.match(start), _CELL.match(end or start)
        col0 = _col_index(m0.group(1)) if m0.group(1) else 0
        col1 = _col_index(m1.group(1)) if m1.group(1) else col0
        row0 = int(m0.group(2)) - 1 if m0.group(2) else 0
        row1 = int(m1.group(2)) - 1 if m1.group(2) else None
        return sheet, col0, col1, row0, row1

    def _get(self, a1_range):
        sheet, col0, col1, row0, row1 = self._parse(a1_range)
        grid = self.grids[sheet]
        last = len(grid) - 1 if row1 is None else row1
        values = []
        for r in range(row0, last + 1):
            row = grid[r][col0:col1 + 1] if r < len(grid) else []
            while row and row[-1] == "":
                row = row[:-1]
            values.append(list(row))
        while values and not values[-1]:
            values.pop()
        return {"values": values} if values else {}

    def _write(self, sheet, row_index, col0, values):
        grid = self.grids[sheet]
        while len(grid) <= row_index:
            grid.append([])
        row = grid[row_index]
        while len(row) < col0 + len(values):
            row.append("")
        row[col0:col0 + len(values)] = values

    def _append(self, a1_range, values):
        sheet, col0, col1, _, _ = self._parse(a1_range)
        grid = self.grids[sheet]
        next_row = 0
        for i, row in enumerate(grid):
            if any(cell != "" for cell in row[col0:col1 + 1]):
                next_row = i + 1
        for offset, row_values in enumerate(values):
            self._write(sheet, next_row + offset, col0, row_values)
        row_number = next_row + len(values)
        width = len(values[0])
        return {
            "updates": {
                "updatedRange": f"{sheet}!{_col_letter(col0)}{next_row + 1}:{_col_letter(col0 + width - 1)}{row_number}",
                "updatedCells": sum(len(v) for v in values),
            }
        }

    def _update(self, a1_range, values):
        sheet, col0, _, row0, _ = self._parse(a1_range)
        for offset, row_values in enumerate(values):
            self._write(sheet, row0 + offset, col0, row_values)
        return {"updatedCells": sum(len(v) for v in values)}


# =============================================================================
# Fake Twilio client
# =============================================================================

class FakeTwilioMessages:
    def __init__(self):
        self.created = []
        self.error = None

    def create(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.created.append(kwargs)
        return SimpleNamespace(sid=f"SM{len(self.created):032d}")


class FakeTwilioClient:
    def __init__(self):
        self.messages = FakeTwilioMessages()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sheets_service():
    return FakeSheetsService("Sheet1")


@pytest.fixture
def store(sheets_service):
    return SheetsLogStore(spreadsheet_id="test-spreadsheet", service=sheets_service)


@pytest.fixture
def twilio_client():
    return FakeTwilioClient()


@pytest.fixture
def messenger(twilio_client):
    return TwilioMessenger(twilio_client)
