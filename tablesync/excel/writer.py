from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from .grid import EMPTY_RANGE, GridRange, Sheet
from .headers import HeaderCase, get_headers_range, normalize_headers
from .reader import CHUNK_THRESHOLD_CELLS
from .retry import DEFAULT_RETRY, RetryPolicy

"""Table Writer: records -> destination rows under a header row.

The column layout always comes from the destination's header row; record fields that
match no header are ignored and headers with no matching field are written as "".
Physical writes go through a ``TableWriteBackend`` so the placement logic is the same for
an in-place bulk write, one-row-at-a-time atomic appends and a remote batch-update API.
"""

__all__ = [
    "WriteMethod",
    "WriteOptions",
    "TableWriteBackend",
    "BulkWriteBackend",
    "AtomicAppendBackend",
    "RemoteBatchBackend",
    "RemoteTransport",
    "build_batch_update_request",
    "write_records",
]

logger = logging.getLogger(__name__)


class WriteMethod(Enum):
    OVERWRITE = "overwrite"
    APPEND = "append"
    APPEND_ROW = "append-row"
    CLEAR = "clear"
    DELETE = "delete"


class TableWriteBackend(Protocol):
    def write(self, sheet: Sheet, rng: GridRange, values: list[list[Any]]) -> None: ...


class BulkWriteBackend:
    """Writes the whole grid in one ``set_values`` call."""

    def write(self, sheet: Sheet, rng: GridRange, values: list[list[Any]]) -> None:
        sheet.set_values(rng.row, rng.column, values)


class AtomicAppendBackend:
    """One ``append_row`` per record; concurrent writers never interleave within a row.

    Rows land after the sheet's last row regardless of ``rng.row``. Columns left of the
    destination range are padded with ``None`` so existing cells there stay untouched.
    """

    def write(self, sheet: Sheet, rng: GridRange, values: list[list[Any]]) -> None:
        padding = [None] * (rng.column - 1)
        for line in values:
            sheet.append_row(padding + list(line))


class RemoteTransport(Protocol):
    def batch_update(self, body: dict[str, Any]) -> Any: ...


def build_batch_update_request(sheet_name: str, rng: GridRange, values: list[list[Any]]) -> dict[str, Any]:
    """Values batch-update request body for a single range."""
    return {
        "valueInputOption": "USER_ENTERED",
        "data": [
            {
                "range": f"'{sheet_name}'!{rng.a1}",
                "majorDimension": "ROWS",
                "values": values,
            }
        ],
    }


class RemoteBatchBackend:
    """Sends each write as a values batch-update request through ``transport``.

    The local sheet is grown first when the destination extends past ``max_rows()``.
    """

    def __init__(self, transport: RemoteTransport) -> None:
        self.transport = transport

    def write(self, sheet: Sheet, rng: GridRange, values: list[list[Any]]) -> None:
        missing = rng.last_row - sheet.max_rows()
        if missing > 0:
            logger.debug("growing %s by %d row(s)", sheet.name, missing)
            sheet.insert_rows(sheet.max_rows() + 1, missing)
        self.transport.batch_update(build_batch_update_request(sheet.name, rng, values))


@dataclass(frozen=True)
class WriteOptions:
    """Options for write_records.

    Attributes:
        write_method: placement strategy (see WriteMethod)
        headers_row_index: header row of the destination
        start_header / end_header: restrict columns to the span between two header cells
        headers_range: explicit header range (overrides the three above)
        first_row_index: explicit first row to write
        header_case: normalization used to match record fields to headers
        omit_zeros: write numeric 0 as ""
        preserve_formulas: write existing formulas back instead of the record value
        preserve_array_formulas: skip columns whose formula-row cell holds a formula
        formula_row_index: row inspected by preserve_array_formulas
        backend: physical write strategy (default: bulk)
        use_chunks / chunk_size: chunked writing, rows per chunk
        dry_run: compute and log everything, mutate nothing
    """
    write_method: WriteMethod = WriteMethod.OVERWRITE
    headers_row_index: int = 1
    start_header: str | None = None
    end_header: str | None = None
    headers_range: GridRange | None = None
    first_row_index: int | None = None
    header_case: HeaderCase = HeaderCase.CAMEL
    omit_zeros: bool = False
    preserve_formulas: bool = False
    preserve_array_formulas: bool = False
    formula_row_index: int = 1
    backend: TableWriteBackend | None = None
    use_chunks: bool = False
    chunk_size: int = 1000
    retry: RetryPolicy = field(default=DEFAULT_RETRY)
    dry_run: bool = False
    log: bool = False


def _is_zero(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0


def _cell_value(
    key: str,
    record: Mapping[str, Any],
    existing_formula: str,
    array_formula: str,
    options: WriteOptions,
) -> Any:
    if not key:
        return ""
    if options.preserve_array_formulas and array_formula:
        return None  # 配列数式の列はそのまま
    if options.preserve_formulas and existing_formula:
        return existing_formula
    value = record.get(key)
    if value is None:
        return ""
    if options.omit_zeros and _is_zero(value):
        return ""
    return value


def _select_backend(options: WriteOptions) -> TableWriteBackend:
    if options.write_method is WriteMethod.APPEND_ROW:
        if options.backend is not None and not isinstance(options.backend, AtomicAppendBackend):
            raise ValueError("append-row writes need the atomic append backend")
        return options.backend or AtomicAppendBackend()
    return options.backend or BulkWriteBackend()


def _first_row(sheet: Sheet, headers: GridRange, options: WriteOptions) -> int:
    if options.first_row_index:
        return options.first_row_index
    if options.write_method in (WriteMethod.APPEND, WriteMethod.APPEND_ROW):
        return max(sheet.last_row(), headers.row) + 1
    return headers.row + 1


def _write_grid(
    sheet: Sheet,
    dest: GridRange,
    values: list[list[Any]],
    backend: TableWriteBackend,
    options: WriteOptions,
) -> None:
    chunked = options.use_chunks or dest.num_rows * dest.num_columns > CHUNK_THRESHOLD_CELLS
    if not chunked:
        backend.write(sheet, dest, values)
        return

    size = max(options.chunk_size, 1)
    total_chunks = (dest.num_rows + size - 1) // size
    for n, start in enumerate(range(0, dest.num_rows, size), start=1):
        chunk = dest.offset_rows(start, min(size, dest.num_rows - start))
        rows = values[start:start + chunk.num_rows]
        if options.log:
            logger.info("writing chunk %d/%d (%s)", n, total_chunks, chunk.a1)
        options.retry.run(
            lambda chunk=chunk, rows=rows: backend.write(sheet, chunk, rows),
            description=f"write {sheet.name}!{chunk.a1}",
        )


def write_records(
    sheet: Sheet,
    records: Sequence[Mapping[str, Any]] | Mapping[str, Any],
    options: WriteOptions | None = None,
) -> GridRange:
    """Write ``records`` into ``sheet`` and return the range written.

    Zero records is a no-op returning ``EMPTY_RANGE``.

    Raises:
        NotFoundError: the header range cannot be resolved
        ValueError: append-row combined with a non-atomic backend
    """
    options = options or WriteOptions()
    if isinstance(records, Mapping):
        records = [records]
    if not records:
        logger.warning("no records to write to %s", sheet.name)
        return EMPTY_RANGE

    backend = _select_backend(options)
    headers = options.headers_range or get_headers_range(
        sheet, options.headers_row_index, options.start_header, options.end_header
    )
    keys = normalize_headers(sheet.get_values(headers)[0], options.header_case)
    dest = GridRange(_first_row(sheet, headers, options), headers.column, len(records), headers.num_columns)

    existing = [[""] * dest.num_columns for _ in records]
    if options.preserve_formulas:
        existing = sheet.get_formulas(dest)
    array_row = [""] * dest.num_columns
    if options.preserve_array_formulas:
        array_row = sheet.get_formulas(GridRange(options.formula_row_index, dest.column, 1, dest.num_columns))[0]

    values = [
        [
            _cell_value(key, record, existing[i][j], array_row[j], options)
            for j, key in enumerate(keys)
        ]
        for i, record in enumerate(records)
    ]

    if options.dry_run:
        logger.info("[dry-run] would write %d row(s) to %s!%s", len(values), sheet.name, dest.a1)
        return dest

    _write_grid(sheet, dest, values, backend, options)

    if options.write_method is WriteMethod.CLEAR:
        last = sheet.last_row()
        if last > dest.last_row:
            sheet.clear_range(GridRange(dest.last_row + 1, dest.column, last - dest.last_row, dest.num_columns))
    elif options.write_method is WriteMethod.DELETE:
        remaining = sheet.max_rows() - dest.last_row
        if remaining > 0:
            sheet.delete_rows(dest.last_row + 1, remaining)

    if options.log:
        logger.info("wrote %d row(s) to %s!%s", len(values), sheet.name, dest.a1)
    return dest
