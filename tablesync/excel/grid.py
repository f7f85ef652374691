from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from openpyxl.utils import get_column_letter
from openpyxl.utils.cell import range_boundaries

if TYPE_CHECKING:
    from ..services.locks import TableLock

"""Tabular provider abstraction.

Every source/destination the sync touches is reached through the ``Sheet`` protocol:
rectangular reads (raw values, display text, formula text, hyperlink-or-text), grid writes
where ``None`` marks a cell to leave untouched, row insert/delete, single-row atomic
append, sheet-scoped named ranges and a default lock factory.

Row and column indices are 1-based throughout, as in the spreadsheet itself. Empty cells
are reported as "".
"""

__all__ = [
    "GridRange",
    "EMPTY_RANGE",
    "Sheet",
    "NotFoundError",
    "TransientIOError",
]


class NotFoundError(Exception):
    """Raised when a named header, range, sheet or row cannot be found."""


class TransientIOError(Exception):
    """Raised by providers for failures that may succeed when retried."""


_ROWS_ONLY_RE = re.compile(r"^\$?(\d+):\$?(\d+)$")


@dataclass(frozen=True)
class GridRange:
    """Rectangular 1-based cell region."""
    row: int
    column: int
    num_rows: int
    num_columns: int

    @property
    def last_row(self) -> int:
        return self.row + self.num_rows - 1

    @property
    def last_column(self) -> int:
        return self.column + self.num_columns - 1

    @property
    def is_empty(self) -> bool:
        return self.num_rows <= 0 or self.num_columns <= 0

    @property
    def a1(self) -> str:
        if self.is_empty:
            return "Empty range"
        start = f"{get_column_letter(self.column)}{self.row}"
        if self.num_rows == 1 and self.num_columns == 1:
            return start
        return f"{start}:{get_column_letter(self.last_column)}{self.last_row}"

    def offset_rows(self, start: int, count: int) -> GridRange:
        """Sub-range of ``count`` rows beginning ``start`` rows below the top row."""
        return GridRange(self.row + start, self.column, count, self.num_columns)

    @staticmethod
    def from_a1(text: str, width: int | None = None) -> GridRange:
        """Parse A1 notation ("B2:D9", "$A$1", "3:4").

        Whole-row references ("3:4") need ``width`` (the sheet's last column).
        """
        ref = text.split("!")[-1].strip()
        m = _ROWS_ONLY_RE.match(ref)
        if m:
            if width is None:
                raise ValueError(f"row range '{text}' needs a sheet width")
            first, last = int(m.group(1)), int(m.group(2))
            return GridRange(first, 1, last - first + 1, max(width, 1))
        try:
            min_col, min_row, max_col, max_row = range_boundaries(ref)
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid A1 range '{text}': {e}") from e
        if None in (min_col, min_row, max_col, max_row):
            raise ValueError(f"unbounded A1 range not supported: '{text}'")
        return GridRange(min_row, min_col, max_row - min_row + 1, max_col - min_col + 1)


# 書き込み対象なし (setRowsData の空データ) を表す番兵
EMPTY_RANGE = GridRange(0, 0, 0, 0)


@runtime_checkable
class Sheet(Protocol):
    """Capabilities a tabular source/destination must expose."""

    name: str

    def last_row(self) -> int: ...

    def last_column(self) -> int: ...

    def max_rows(self) -> int: ...

    def get_values(self, rng: GridRange) -> list[list[Any]]: ...

    def get_display_values(self, rng: GridRange) -> list[list[str]]: ...

    def get_formulas(self, rng: GridRange) -> list[list[str]]: ...

    def get_hyperlinks(self, rng: GridRange) -> list[list[Any]]: ...

    def set_values(self, row: int, column: int, values: list[list[Any]]) -> None: ...

    def clear_range(self, rng: GridRange) -> None: ...

    def insert_rows(self, before_row: int, count: int) -> None: ...

    def delete_rows(self, row: int, count: int) -> None: ...

    def append_row(self, values: list[Any]) -> None: ...

    def named_range(self, name: str) -> GridRange | None: ...

    def reload(self) -> None: ...

    def flush(self) -> None: ...

    def create_lock(self) -> TableLock: ...


_DECIMALS_RE = re.compile(r"0\.(0+)")


def format_display(value: Any, number_format: str | None = None) -> str:
    """Render a cell value the way a spreadsheet shows it.

    Covers the formats progress sheets actually use: General, fixed decimals with optional
    thousands separator, percentages, dates/datetimes and booleans.
    """
    if value is None or value == "":
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    # datetime は date のサブクラスなので先に判定
    if hasattr(value, "hour") and hasattr(value, "year"):
        text = f"{value.month}/{value.day}/{value.year}"
        if (value.hour, value.minute, value.second) != (0, 0, 0):
            text += f" {value.hour}:{value.minute:02d}:{value.second:02d}"
        return text
    if hasattr(value, "year"):
        return f"{value.month}/{value.day}/{value.year}"
    if isinstance(value, (int, float)):
        fmt = number_format or "General"
        m = _DECIMALS_RE.search(fmt)
        decimals = len(m.group(1)) if m else 0
        if "%" in fmt:
            return f"{value * 100:.{decimals}f}%"
        if fmt == "General":
            if isinstance(value, float) and value.is_integer():
                return str(int(value))
            return f"{value:.10g}" if isinstance(value, float) else str(value)
        sep = "," if "," in fmt else ""
        return f"{value:{sep}.{decimals}f}"
    return str(value)
