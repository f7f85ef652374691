from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models.record import Record
from .grid import GridRange, Sheet
from .headers import HeaderCase, get_body_range, normalize_headers
from .retry import DEFAULT_RETRY, RetryPolicy

"""Grid Reader: rectangular cell region + header row -> list of Records.

Reading a sheet laid out as

    | First Name | Last Name | Grade |
    | Ada        | Lovelace  | 3     |
    |            |           |       |
    | Alan       | Turing    | 4     |

yields two records ``{"firstName": "Ada", ...}`` and ``{"firstName": "Alan", ...}``; the
blank row is dropped unless ``keep_blank_rows`` is set.
"""

__all__ = [
    "ValueMode",
    "ReadOptions",
    "read_records",
    "read_grid",
    "CHUNK_THRESHOLD_CELLS",
]

logger = logging.getLogger(__name__)

# これを超える (rows x columns) の読み込みは自動で分割
CHUNK_THRESHOLD_CELLS = 999_999


class ValueMode(Enum):
    RAW = "raw"
    DISPLAY = "display"
    FORMULA = "formula"
    HYPERLINK = "hyperlink"


@dataclass(frozen=True)
class ReadOptions:
    """Options for read_records.

    Attributes:
        headers_row_index: header row (default: the row above the range, else 1)
        start_header / end_header: restrict columns to the span between two header cells
        value_mode: which representation of each cell is read
        header_case: field-name normalization applied to the header row
        trim: strip string values
        keep_blank_rows: keep empty rows (and empty cells as "")
        keep_blank_headers: keep cells whose header normalizes to ""
        with_metadata: set Record.sheet_row / Record.array_index
        use_chunks: force chunked reading
        chunk_size: rows per chunk
    """
    headers_row_index: int | None = None
    start_header: str | None = None
    end_header: str | None = None
    value_mode: ValueMode = ValueMode.RAW
    header_case: HeaderCase = HeaderCase.CAMEL
    trim: bool = False
    keep_blank_rows: bool = False
    keep_blank_headers: bool = False
    with_metadata: bool = False
    use_chunks: bool = False
    chunk_size: int = 5000
    retry: RetryPolicy = field(default=DEFAULT_RETRY)
    log: bool = False


def _read_cells(sheet: Sheet, rng: GridRange, mode: ValueMode) -> list[list[Any]]:
    if mode is ValueMode.DISPLAY:
        return sheet.get_display_values(rng)
    if mode is ValueMode.HYPERLINK:
        return sheet.get_hyperlinks(rng)
    if mode is ValueMode.FORMULA:
        formulas = sheet.get_formulas(rng)
        values = sheet.get_values(rng)
        return [
            [f if f else v for f, v in zip(f_row, v_row)]
            for f_row, v_row in zip(formulas, values)
        ]
    return sheet.get_values(rng)


def read_grid(sheet: Sheet, rng: GridRange, options: ReadOptions) -> list[list[Any]]:
    """Read ``rng`` in the requested value mode, chunked when large or requested."""
    chunked = options.use_chunks or rng.num_rows * rng.num_columns > CHUNK_THRESHOLD_CELLS
    if not chunked:
        return _read_cells(sheet, rng, options.value_mode)

    size = max(options.chunk_size, 1)
    total_chunks = (rng.num_rows + size - 1) // size
    values: list[list[Any]] = []
    for n, start in enumerate(range(0, rng.num_rows, size), start=1):
        chunk = rng.offset_rows(start, min(size, rng.num_rows - start))
        if options.log:
            logger.info("reading chunk %d/%d (%s)", n, total_chunks, chunk.a1)
        values.extend(
            options.retry.run(
                lambda chunk=chunk: _read_cells(sheet, chunk, options.value_mode),
                description=f"read {sheet.name}!{chunk.a1}",
            )
        )
    return values


def _resolve_body(sheet: Sheet, grid_range: GridRange | None, options: ReadOptions) -> tuple[GridRange, int]:
    if grid_range is not None:
        headers_row = options.headers_row_index or max(grid_range.row - 1, 1)
        return grid_range, headers_row

    headers_row = options.headers_row_index or 1
    last = sheet.max_rows() if options.keep_blank_rows else sheet.last_row()
    num_rows = last - headers_row
    if options.start_header or options.end_header:
        body = get_body_range(
            sheet, headers_row, options.start_header, options.end_header, num_rows=num_rows
        )
        return body, headers_row
    return GridRange(headers_row + 1, 1, max(num_rows, 0), sheet.last_column()), headers_row


def read_records(
    sheet: Sheet,
    grid_range: GridRange | None = None,
    options: ReadOptions | None = None,
) -> list[Record]:
    """Read rows of ``sheet`` as Records keyed by normalized header.

    Raises:
        NotFoundError: start_header / end_header is not in the header row
    """
    options = options or ReadOptions()
    if sheet.last_row() < 2:
        return []

    body, headers_row = _resolve_body(sheet, grid_range, options)
    if body.is_empty:
        return []

    header_cells = sheet.get_values(GridRange(headers_row, body.column, 1, body.num_columns))[0]
    keys = normalize_headers(header_cells, options.header_case)
    rows = read_grid(sheet, body, options)

    records: list[Record] = []
    for offset, row in enumerate(rows):
        record = Record()
        has_data = False
        for key, value in zip(keys, row):
            if not key and not options.keep_blank_headers:
                continue
            if value is None:
                value = ""
            if options.trim and isinstance(value, str):
                value = value.strip()
            if value != "":
                has_data = True
                record[key] = value
            elif options.keep_blank_rows:
                record[key] = value
        if not has_data and not options.keep_blank_rows:
            continue
        if options.with_metadata:
            record.sheet_row = body.row + offset
            record.array_index = len(records)
        records.append(record)

    if options.log:
        logger.info("read %d record(s) from %s!%s", len(records), sheet.name, body.a1)
    return records
