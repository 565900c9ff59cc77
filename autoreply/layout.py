"""
Column layouts for the log sheet.

A layout maps LogRow fields onto spreadsheet columns. The mapping is a
static contract with whoever owns the sheet; nothing is negotiated at
runtime, so the layout must match the sheet's header row.

For the store that writes these rows, see sheets.py.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from autoreply.schemas import LogRow


def column_index(letter: str) -> int:
    """Zero-based index of a column letter: A -> 0, Z -> 25, AA -> 26."""
    index = 0
    for ch in letter.upper():
        if not "A" <= ch <= "Z":
            raise ValueError(f"invalid column letter: {letter!r}")
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


def column_letter(index: int) -> str:
    """Inverse of column_index."""
    if index < 0:
        raise ValueError(f"invalid column index: {index}")
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


@dataclass(frozen=True)
class Column:
    field: str
    letter: str
    header: str


@dataclass(frozen=True)
class SheetLayout:
    """
    Ordered field -> column mapping.

    Columns between the first and last mapped column that carry no field
    are written as empty strings so the append stays rectangular.
    """
    name: str
    columns: Tuple[Column, ...]
    phone_field: str = "phone"

    def __post_init__(self):
        fields = [c.field for c in self.columns]
        unknown = set(fields) - set(LogRow.model_fields)
        if unknown:
            raise ValueError(f"layout {self.name!r} maps unknown fields: {sorted(unknown)}")
        if len(set(fields)) != len(fields):
            raise ValueError(f"layout {self.name!r} maps a field twice")
        letters = [c.letter for c in self.columns]
        if len(set(letters)) != len(letters):
            raise ValueError(f"layout {self.name!r} maps a column twice")
        if self.phone_field not in fields:
            raise ValueError(f"layout {self.name!r} has no {self.phone_field!r} column")

    @property
    def first_index(self) -> int:
        return min(column_index(c.letter) for c in self.columns)

    @property
    def last_index(self) -> int:
        return max(column_index(c.letter) for c in self.columns)

    @property
    def first_column(self) -> str:
        return column_letter(self.first_index)

    @property
    def last_column(self) -> str:
        return column_letter(self.last_index)

    @property
    def width(self) -> int:
        return self.last_index - self.first_index + 1

    @property
    def phone_column(self) -> Column:
        return next(c for c in self.columns if c.field == self.phone_field)

    def column_range(self) -> str:
        """Unqualified A1 range covering all mapped columns, e.g. A:E."""
        return f"{self.first_column}:{self.last_column}"

    def row_range(self, first_row: int, last_row: int) -> str:
        """Unqualified A1 range for whole rows of the layout, e.g. A1:E2."""
        return f"{self.first_column}{first_row}:{self.last_column}{last_row}"

    def render(self, row: LogRow) -> List[str]:
        """Physical cell values for one row, left to right."""
        values = [""] * self.width
        for col in self.columns:
            values[column_index(col.letter) - self.first_index] = getattr(row, col.field)
        return values

    def headers(self) -> List[str]:
        """Header labels in physical order, blanks for unmapped columns."""
        values = [""] * self.width
        for col in self.columns:
            values[column_index(col.letter) - self.first_index] = col.header
        return values

    def header_labels(self) -> List[str]:
        return [c.header for c in self.columns]


STANDARD_LAYOUT = SheetLayout(
    name="standard",
    columns=(
        Column("phone", "A", "Phone"),
        Column("message", "B", "Message"),
        Column("timestamp", "C", "Timestamp"),
        Column("date", "D", "Date"),
        Column("time", "E", "Time"),
    ),
)

# Hebrew-labelled sheet that only tracks when and who: A=time, B=date, C=phone
COMPACT_LAYOUT = SheetLayout(
    name="compact",
    columns=(
        Column("time", "A", "שעה"),
        Column("date", "B", "תאריך"),
        Column("phone", "C", "טלפון"),
    ),
)

LAYOUTS: Dict[str, SheetLayout] = {
    STANDARD_LAYOUT.name: STANDARD_LAYOUT,
    COMPACT_LAYOUT.name: COMPACT_LAYOUT,
}


def get_layout(name: str) -> SheetLayout:
    try:
        return LAYOUTS[name]
    except KeyError:
        raise ValueError(f"unknown sheet layout: {name!r}") from None
