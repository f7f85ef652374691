from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import replace
from typing import Any

from ..excel.grid import GridRange, NotFoundError, Sheet
from ..excel.headers import normalize_headers
from ..excel.reader import ReadOptions, read_records
from ..excel.writer import WriteMethod, WriteOptions, write_records
from ..models.outcome import ReconcileOutcome
from ..models.record import PrimaryKey, Record, is_empty_value
from .hashing import DEFAULT_SEPARATOR, canonical_key_part, hash_records, hash_records_many_to_one, key_fields
from .locks import TableLock
from .reconciler import Notifier, reconcile, remove_records

"""Named table facade over a Sheet plus the registry that looks tables up by name."""

__all__ = [
    "SheetTable",
    "TableRegistry",
]

logger = logging.getLogger(__name__)

SheetOpener = Callable[[], Sheet]


class SheetTable:
    """A keyed table living on one sheet.

    ``sheet`` and ``headers`` are loaded on first access and kept until ``refresh()``.
    """

    def __init__(
        self,
        name: str,
        opener: SheetOpener,
        primary_key: PrimaryKey | None = None,
        *,
        read_options: ReadOptions | None = None,
        write_options: WriteOptions | None = None,
        key_counter: Iterator[int] | None = None,
        separator: str = DEFAULT_SEPARATOR,
    ) -> None:
        self.name = name
        self.primary_key = primary_key
        self.write_options = write_options or WriteOptions()
        self.read_options = replace(
            read_options
            or ReadOptions(
                headers_row_index=self.write_options.headers_row_index,
                header_case=self.write_options.header_case,
            ),
            with_metadata=True,
        )
        self.separator = separator
        self._opener = opener
        self._key_counter = key_counter
        self._sheet: Sheet | None = None
        self._headers: list[str] | None = None

    @property
    def sheet(self) -> Sheet:
        if self._sheet is None:
            self._sheet = self._opener()
        return self._sheet

    @property
    def headers(self) -> list[str]:
        if self._headers is None:
            row = self.read_options.headers_row_index or 1
            width = self.sheet.last_column()
            cells = self.sheet.get_values(GridRange(row, 1, 1, width))[0] if width else []
            self._headers = normalize_headers(cells, self.read_options.header_case)
        return self._headers

    def refresh(self) -> None:
        self._sheet = None
        self._headers = None

    def _require_key(self) -> PrimaryKey:
        if self.primary_key is None:
            raise ValueError(f"table '{self.name}' has no primary key")
        return self.primary_key

    # ------------------------------------------------------------------ reads
    def get_rows(
        self,
        refresh: bool = True,
        a1_range: str | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> list[Record]:
        """Rows as Records; ``filter`` maps field -> allowed value or collection of values."""
        if refresh:
            self.refresh()
        rng = GridRange.from_a1(a1_range, width=self.sheet.last_column()) if a1_range else None
        rows = read_records(self.sheet, rng, self.read_options)
        if not filter:
            return rows
        allowed = {
            name: set(v) if isinstance(v, (list, tuple, set, frozenset)) else {v}
            for name, v in filter.items()
        }
        return [r for r in rows if all(r.get(name) in values for name, values in allowed.items())]

    def get_rows_hashed_by(
        self, key: PrimaryKey | None = None, many_to_one: bool = False
    ) -> dict[str, Record] | dict[str, list[Record]]:
        key = key or self._require_key()
        rows = self.get_rows()
        if many_to_one:
            return hash_records_many_to_one(rows, key, self.separator)
        return hash_records(rows, key, self.separator)

    def get_row(self, key: Any, strict: bool = False) -> Record | None:
        """Row by lookup key; a tuple/list key is joined like a compound key."""
        if isinstance(key, (list, tuple)):
            key = self.separator.join(canonical_key_part(k) for k in key)
        else:
            key = canonical_key_part(key)
        row = self.get_rows_hashed_by().get(key)
        if row is None and strict:
            raise NotFoundError(f"no row with key '{key}' in table '{self.name}'")
        return row

    def cell_value(self, a1: str) -> Any:
        rng = GridRange.from_a1(a1, width=self.sheet.last_column())
        return self.sheet.get_values(GridRange(rng.row, rng.column, 1, 1))[0][0]

    # ------------------------------------------------------------------ writes
    def update_rows(
        self,
        records: Sequence[Mapping[str, Any]],
        lock: TableLock | None = None,
        upsert: bool = False,
        only_present_columns: bool = False,
        *,
        lock_timeout: float | None = None,
        notifier: Notifier | None = None,
    ) -> list[ReconcileOutcome]:
        kwargs: dict[str, Any] = {}
        if lock_timeout is not None:
            kwargs["lock_timeout"] = lock_timeout
        outcomes = reconcile(
            self.sheet,
            records,
            self.primary_key,
            write_options=self.write_options,
            lock=lock,
            upsert=upsert,
            only_present_columns=only_present_columns,
            separator=self.separator,
            notifier=notifier,
            **kwargs,
        )
        self._headers = None
        return outcomes

    def remove_rows(
        self,
        records: Sequence[Mapping[str, Any]],
        lock: TableLock | None = None,
        *,
        notifier: Notifier | None = None,
    ) -> list[ReconcileOutcome]:
        return remove_records(
            self.sheet,
            records,
            self.primary_key,
            read_options=self.read_options,
            lock=lock,
            separator=self.separator,
            notifier=notifier,
        )

    def _next_key(self) -> int:
        if self._key_counter is None:
            field = key_fields(self._require_key())[0]
            current = [
                r.get(field) for r in self.get_rows()
                if isinstance(r.get(field), (int, float)) and not isinstance(r.get(field), bool)
            ]
            start = int(max(current, default=0)) + 1
            self._key_counter = itertools.count(start)
        return next(self._key_counter)

    def insert_rows(self, records: Iterable[Mapping[str, Any]]) -> GridRange:
        """Append records one row at a time, numbering records that lack a scalar key."""
        prepared: list[Record] = []
        scalar = isinstance(self.primary_key, str)
        for record in records:
            row = Record(record)
            if scalar and is_empty_value(row.get(self.primary_key)):
                row[self.primary_key] = self._next_key()
            prepared.append(row)
        options = replace(self.write_options, write_method=WriteMethod.APPEND_ROW, backend=None)
        written = write_records(self.sheet, prepared, options)
        self.sheet.flush()
        return written


class TableRegistry:
    """Tables by name. Built once at startup and passed to whatever needs lookups."""

    def __init__(self, tables: Iterable[SheetTable] = ()) -> None:
        self._tables: dict[str, SheetTable] = {}
        for table in tables:
            self.register(table)

    def register(self, table: SheetTable) -> SheetTable:
        if table.name in self._tables:
            logger.warning("table '%s' registered twice; replacing", table.name)
        self._tables[table.name] = table
        return table

    def get(self, name: str) -> SheetTable:
        try:
            return self._tables[name]
        except KeyError:
            raise NotFoundError(f"table '{name}' is not registered") from None

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def names(self) -> list[str]:
        return list(self._tables)
