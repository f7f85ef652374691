from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.formula import ArrayFormula
from openpyxl.worksheet.worksheet import Worksheet

from ..services.locks import FileTableLock, TableLock
from .grid import GridRange, NotFoundError, TransientIOError, format_display

"""openpyxl-backed ``Sheet`` provider for .xlsx workbooks.

The workbook is loaded twice: once with formulas (the copy that is edited and saved) and
once with ``data_only=True`` for the values Excel cached the last time the file was
calculated. A formula cell reads as its cached value ("" if the workbook was never
calculated since the formula was written).
"""

__all__ = [
    "WorkbookDocument",
    "WorkbookSheet",
]

logger = logging.getLogger(__name__)


def _formula_text(value: Any) -> str:
    if isinstance(value, ArrayFormula):
        return value.text or ""
    if isinstance(value, str) and value.startswith("="):
        return value
    return ""


class WorkbookDocument:
    """An .xlsx file opened for reading and writing."""

    def __init__(self, path: Path | str, *, create: bool = False) -> None:
        self.path = Path(path)
        if self.path.exists():
            self._load()
        elif create:
            self._wb = Workbook()
            self._cached = Workbook()
        else:
            raise NotFoundError(f"workbook not found: {self.path}")
        self._sheets: dict[str, WorkbookSheet] = {}

    def _load(self) -> None:
        try:
            self._wb = load_workbook(self.path)
            self._cached = load_workbook(self.path, data_only=True)
        except OSError as e:
            raise TransientIOError(f"cannot open workbook {self.path}: {e}") from e

    def reload(self) -> None:
        """Re-read the file, discarding unsaved edits. Call with the table lock held."""
        if not self.path.exists():
            return  # まだ保存されていない新規ブック
        self._load()
        for name, sheet in list(self._sheets.items()):
            if name not in self._wb.sheetnames:
                del self._sheets[name]
                continue
            sheet._ws = self._wb[name]
            sheet._cached = self._cached[name] if name in self._cached.sheetnames else None
        logger.debug("reloaded %s", self.path)

    @property
    def sheet_names(self) -> list[str]:
        return list(self._wb.sheetnames)

    def sheet(self, name: str | None = None, index: int = 0) -> WorkbookSheet:
        """Sheet by name, else by 0-based position."""
        if name is None:
            names = self._wb.sheetnames
            if index >= len(names):
                raise NotFoundError(f"{self.path.name} has no sheet at position {index}")
            name = names[index]
        if name not in self._wb.sheetnames:
            raise NotFoundError(f"sheet '{name}' not found in {self.path.name}")
        if name not in self._sheets:
            cached = self._cached[name] if name in self._cached.sheetnames else None
            self._sheets[name] = WorkbookSheet(self, self._wb[name], cached)
        return self._sheets[name]

    def save(self) -> None:
        try:
            self._wb.save(self.path)
        except OSError as e:
            raise TransientIOError(f"cannot save workbook {self.path}: {e}") from e
        logger.debug("saved %s", self.path)

    def create_lock(self) -> TableLock:
        return FileTableLock(self.path.with_name(self.path.name + ".lock"))


class WorkbookSheet:
    """One worksheet of a WorkbookDocument."""

    def __init__(self, document: WorkbookDocument, ws: Worksheet, cached: Worksheet | None) -> None:
        self.document = document
        self._ws = ws
        self._cached = cached
        self.name = ws.title

    # ------------------------------------------------------------------ geometry
    def _row_has_data(self, r: int) -> bool:
        for value in next(self._ws.iter_rows(min_row=r, max_row=r, values_only=True), ()):
            if value is not None and value != "":
                return True
        return False

    def last_row(self) -> int:
        for r in range(self._ws.max_row, 0, -1):
            if self._row_has_data(r):
                return r
        return 0

    def last_column(self) -> int:
        width = 0
        for row in self._ws.iter_rows(values_only=True):
            for c in range(len(row), width, -1):
                if row[c - 1] is not None and row[c - 1] != "":
                    width = c
                    break
        return width

    def max_rows(self) -> int:
        return self._ws.max_row

    # ------------------------------------------------------------------ reads
    def _value(self, r: int, c: int) -> Any:
        cell = self._ws.cell(row=r, column=c)
        if _formula_text(cell.value):
            cached = self._cached.cell(row=r, column=c).value if self._cached is not None else None
            return "" if cached is None else cached
        return "" if cell.value is None else cell.value

    def _grid(self, rng: GridRange, fn) -> list[list[Any]]:
        return [
            [fn(r, c) for c in range(rng.column, rng.last_column + 1)]
            for r in range(rng.row, rng.last_row + 1)
        ]

    def get_values(self, rng: GridRange) -> list[list[Any]]:
        return self._grid(rng, self._value)

    def get_display_values(self, rng: GridRange) -> list[list[str]]:
        return self._grid(
            rng,
            lambda r, c: format_display(self._value(r, c), self._ws.cell(row=r, column=c).number_format),
        )

    def get_formulas(self, rng: GridRange) -> list[list[str]]:
        return self._grid(rng, lambda r, c: _formula_text(self._ws.cell(row=r, column=c).value))

    def get_hyperlinks(self, rng: GridRange) -> list[list[Any]]:
        def link_or_text(r: int, c: int) -> Any:
            link = self._ws.cell(row=r, column=c).hyperlink
            if link is not None and link.target:
                return link.target
            return self._value(r, c)

        return self._grid(rng, link_or_text)

    # ------------------------------------------------------------------ writes
    def set_values(self, row: int, column: int, values: list[list[Any]]) -> None:
        for i, line in enumerate(values):
            for j, value in enumerate(line):
                if value is None:
                    continue
                self._ws.cell(row=row + i, column=column + j).value = value

    def clear_range(self, rng: GridRange) -> None:
        for r in range(rng.row, rng.last_row + 1):
            for c in range(rng.column, rng.last_column + 1):
                cell = self._ws.cell(row=r, column=c)
                cell.value = None
                cell.hyperlink = None

    def insert_rows(self, before_row: int, count: int) -> None:
        self._ws.insert_rows(before_row, amount=count)
        if self._cached is not None:
            self._cached.insert_rows(before_row, amount=count)

    def delete_rows(self, row: int, count: int) -> None:
        self._ws.delete_rows(row, amount=count)
        if self._cached is not None:
            self._cached.delete_rows(row, amount=count)

    def append_row(self, values: list[Any]) -> None:
        # ws.append は書式だけの行の後ろに追加してしまう
        self.set_values(self.last_row() + 1, 1, [list(values)])

    # ------------------------------------------------------------------ misc
    def named_range(self, name: str) -> GridRange | None:
        scopes = [self._ws.defined_names, self.document._wb.defined_names]
        for defined in scopes:
            for full_name, dn in defined.items():
                if full_name.split("!")[-1] != name:
                    continue
                for title, coord in dn.destinations:
                    if title == self.name:
                        return GridRange.from_a1(coord.replace("$", ""), width=self.last_column())
        return None

    def reload(self) -> None:
        self.document.reload()

    def flush(self) -> None:
        self.document.save()

    def create_lock(self) -> TableLock:
        return self.document.create_lock()
