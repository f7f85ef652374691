from __future__ import annotations

from typing import Any

from ..services.locks import TableLock, ThreadTableLock
from .grid import GridRange, format_display

"""In-memory ``Sheet`` provider.

Keeps values, formula text, hyperlinks and number formats in parallel row lists. Used by
the test-suite and as an in-process destination; behaves like a spreadsheet tab whose
allocated size (``max_rows``) may exceed the last row holding data.
"""

__all__ = [
    "MemorySheet",
]


class MemorySheet:
    """Grid-backed sheet. ``rows`` is a list of rows, each a list of cell values."""

    def __init__(
        self,
        rows: list[list[Any]] | None = None,
        *,
        name: str = "Sheet1",
        formulas: dict[tuple[int, int], str] | None = None,
        links: dict[tuple[int, int], str] | None = None,
        number_formats: dict[tuple[int, int], str] | None = None,
        named_ranges: dict[str, GridRange] | None = None,
        max_rows: int | None = None,
    ) -> None:
        self.name = name
        self._values: list[list[Any]] = [
            ["" if v is None else v for v in row] for row in (rows or [])
        ]
        # (row, column) 1-based -> text
        self._formulas: dict[tuple[int, int], str] = dict(formulas or {})
        self._links: dict[tuple[int, int], str] = dict(links or {})
        self._formats: dict[tuple[int, int], str] = dict(number_formats or {})
        self._named_ranges: dict[str, GridRange] = dict(named_ranges or {})
        if self._formulas:
            self._ensure_rows(max(r for r, _ in self._formulas))
        if max_rows is not None and max_rows > len(self._values):
            self._values.extend([] for _ in range(max_rows - len(self._values)))
        self._lock: ThreadTableLock | None = None
        self.flush_count = 0

    # ------------------------------------------------------------------ geometry
    def _has_data(self, r: int) -> bool:
        row = self._values[r - 1]
        return any(v != "" for v in row) or any(k[0] == r for k in self._formulas)

    def last_row(self) -> int:
        for r in range(len(self._values), 0, -1):
            if self._has_data(r):
                return r
        return 0

    def last_column(self) -> int:
        width = 0
        for row in self._values:
            for c in range(len(row), 0, -1):
                if row[c - 1] != "":
                    width = max(width, c)
                    break
        for (_, c) in self._formulas:
            width = max(width, c)
        return width

    def max_rows(self) -> int:
        return len(self._values)

    def _ensure_rows(self, last_row: int) -> None:
        while len(self._values) < last_row:
            self._values.append([])

    def _cell(self, r: int, c: int) -> Any:
        if r - 1 >= len(self._values):
            return ""
        row = self._values[r - 1]
        return row[c - 1] if c - 1 < len(row) else ""

    def _grid(self, rng: GridRange, fn) -> list[list[Any]]:
        return [
            [fn(r, c) for c in range(rng.column, rng.last_column + 1)]
            for r in range(rng.row, rng.last_row + 1)
        ]

    # ------------------------------------------------------------------ reads
    def get_values(self, rng: GridRange) -> list[list[Any]]:
        return self._grid(rng, self._cell)

    def get_display_values(self, rng: GridRange) -> list[list[str]]:
        return self._grid(rng, lambda r, c: format_display(self._cell(r, c), self._formats.get((r, c))))

    def get_formulas(self, rng: GridRange) -> list[list[str]]:
        return self._grid(rng, lambda r, c: self._formulas.get((r, c), ""))

    def get_hyperlinks(self, rng: GridRange) -> list[list[Any]]:
        return self._grid(rng, lambda r, c: self._links.get((r, c)) or self._cell(r, c))

    # ------------------------------------------------------------------ writes
    def _set(self, r: int, c: int, value: Any) -> None:
        self._ensure_rows(r)
        row = self._values[r - 1]
        while len(row) < c:
            row.append("")
        if isinstance(value, str) and value.startswith("="):
            self._formulas[(r, c)] = value
            return
        self._formulas.pop((r, c), None)
        row[c - 1] = value

    def set_values(self, row: int, column: int, values: list[list[Any]]) -> None:
        for i, line in enumerate(values):
            for j, value in enumerate(line):
                if value is None:
                    continue  # プレースホルダ: 既存セルを保持
                self._set(row + i, column + j, value)

    def clear_range(self, rng: GridRange) -> None:
        for r in range(rng.row, rng.last_row + 1):
            for c in range(rng.column, rng.last_column + 1):
                if r - 1 < len(self._values) and c - 1 < len(self._values[r - 1]):
                    self._values[r - 1][c - 1] = ""
                self._formulas.pop((r, c), None)
                self._links.pop((r, c), None)

    def _shift(self, mapping: dict[tuple[int, int], Any], from_row: int, delta: int, drop: range | None = None) -> dict:
        shifted: dict[tuple[int, int], Any] = {}
        for (r, c), v in mapping.items():
            if drop is not None and r in drop:
                continue
            shifted[(r + delta, c) if r >= from_row else (r, c)] = v
        return shifted

    def insert_rows(self, before_row: int, count: int) -> None:
        self._ensure_rows(before_row - 1)
        for _ in range(count):
            self._values.insert(before_row - 1, [])
        self._formulas = self._shift(self._formulas, before_row, count)
        self._links = self._shift(self._links, before_row, count)
        self._formats = self._shift(self._formats, before_row, count)

    def delete_rows(self, row: int, count: int) -> None:
        removed = range(row, row + count)
        del self._values[row - 1:row - 1 + count]
        self._formulas = self._shift(self._formulas, row + count, -count, drop=removed)
        self._links = self._shift(self._links, row + count, -count, drop=removed)
        self._formats = self._shift(self._formats, row + count, -count, drop=removed)

    def append_row(self, values: list[Any]) -> None:
        target = self.last_row() + 1
        self._ensure_rows(target)
        for j, value in enumerate(values):
            if value is None:
                continue
            self._set(target, j + 1, value)

    # ------------------------------------------------------------------ misc
    def named_range(self, name: str) -> GridRange | None:
        for full_name, rng in self._named_ranges.items():
            if full_name.split("!")[-1] == name:
                return rng
        return None

    def reload(self) -> None:
        """Nothing to re-read: the grid is the only copy."""

    def flush(self) -> None:
        self.flush_count += 1

    def create_lock(self) -> TableLock:
        if self._lock is None:
            self._lock = ThreadTableLock(name=self.name)
        return self._lock

    # テスト用ヘルパ
    def rows(self) -> list[list[Any]]:
        """Snapshot of the value grid trimmed to the last row with data."""
        width = self.last_column()
        return self.get_values(GridRange(1, 1, self.last_row(), width)) if width else []
