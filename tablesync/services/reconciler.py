from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from typing import Any, Protocol

from ..excel.grid import Sheet
from ..excel.reader import ReadOptions, read_records
from ..excel.writer import AtomicAppendBackend, WriteMethod, WriteOptions, write_records
from ..models.outcome import (
    MISSING_KEY,
    NO_MATCHING_ROW,
    NO_ROW_METADATA,
    OutcomeStatus,
    ReconcileOutcome,
)
from ..models.record import PrimaryKey, Record, is_empty_value
from .hashing import DEFAULT_SEPARATOR, hash_records, make_key
from .locks import DEFAULT_LOCK_TIMEOUT, TableLock

"""Upsert Reconciler: synchronize summary records into a keyed destination table.

Protocol for ``reconcile`` and ``remove_records``:

1. acquire the table lock (bounded wait)
2. reload the destination so writes saved by other holders of the lock are not lost
3. read the destination with row metadata and index it by primary key
4. apply every record in input order; per-record failures become FAILED outcomes
5. flush the sheet
6. release the lock unless the caller passed it in

Only exceptions (lock timeout, missing headers, I/O) abort the call.
"""

__all__ = [
    "Notifier",
    "reconcile",
    "remove_records",
    "delete_sheet_rows",
]

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_error(
        self,
        error: BaseException | str,
        halt: bool = False,
        context: str = "",
        **details: Any,
    ) -> None: ...


def _failed(
    index: int,
    key: str | None,
    reason: str,
    sheet: Sheet,
    notifier: Notifier | None,
    row: int | None = None,
) -> ReconcileOutcome:
    label = key if key is not None else f"#{index}"
    logger.warning("record %s not reconciled into '%s': %s", label, sheet.name, reason)
    if notifier is not None:
        notifier.notify_error(
            f"record {label}: {reason}",
            halt=False,
            context=f"reconciling into {sheet.name}",
            error_type=reason.upper().replace(" ", "_"),
            sheet=sheet.name,
            row=row,
        )
    return ReconcileOutcome(index, key, OutcomeStatus.FAILED, reason, row)


def _merge_present(record: Mapping[str, Any], existing: Mapping[str, Any]) -> Record:
    merged = Record(record)
    for name, value in existing.items():
        if record.get(name) is None:
            merged[name] = value
    return merged


def _write_at(sheet: Sheet, record: Record, row: int, options: WriteOptions) -> None:
    # 追記バックエンドは既存行を上書きできない
    backend = None if isinstance(options.backend, AtomicAppendBackend) else options.backend
    in_place = replace(options, write_method=WriteMethod.OVERWRITE, first_row_index=row, backend=backend)
    write_records(sheet, [record], in_place)


def _acquire(sheet: Sheet, lock: TableLock | None, timeout: float) -> tuple[TableLock, bool]:
    if lock is not None:
        lock.acquire(timeout)
        return lock, False
    own = sheet.create_lock()
    own.acquire(timeout)
    return own, True


def reconcile(
    sheet: Sheet,
    records: Sequence[Mapping[str, Any]],
    primary_key: PrimaryKey | None,
    *,
    write_options: WriteOptions | None = None,
    lock: TableLock | None = None,
    upsert: bool = False,
    only_present_columns: bool = False,
    separator: str = DEFAULT_SEPARATOR,
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    notifier: Notifier | None = None,
) -> list[ReconcileOutcome]:
    """Update (or insert, with ``upsert``) ``records`` in ``sheet`` keyed by ``primary_key``.

    With ``primary_key=None`` every record is written back at its own ``sheet_row``.
    ``only_present_columns`` keeps the destination's value for every column the incoming
    record leaves absent or None.

    Raises:
        LockTimeoutError: the lock could not be acquired within ``lock_timeout``
        NotFoundError: the destination header row cannot be resolved
        ValueError: ``only_present_columns`` without a primary key
    """
    if primary_key is None and only_present_columns:
        raise ValueError("only_present_columns requires a primary key")
    options = write_options or WriteOptions()
    insert_method = WriteMethod.APPEND_ROW if options.write_method is WriteMethod.APPEND_ROW else WriteMethod.APPEND

    held, owned = _acquire(sheet, lock, lock_timeout)
    try:
        sheet.reload()
        outcomes: list[ReconcileOutcome] = []
        if primary_key is None:
            for i, record in enumerate(records):
                row = getattr(record, "sheet_row", None)
                if row is None:
                    outcomes.append(_failed(i, None, NO_ROW_METADATA, sheet, notifier))
                    continue
                _write_at(sheet, Record(record), row, options)
                outcomes.append(ReconcileOutcome(i, None, OutcomeStatus.UPDATED, sheet_row=row))
        else:
            read_options = ReadOptions(
                headers_row_index=options.headers_row_index,
                header_case=options.header_case,
                with_metadata=True,
                retry=options.retry,
            )
            index = hash_records(read_records(sheet, options=read_options), primary_key, separator)
            logger.debug("indexed %d destination row(s) of '%s'", len(index), sheet.name)

            for i, record in enumerate(records):
                key = make_key(record, primary_key, separator)
                if key is None:
                    outcomes.append(_failed(i, None, MISSING_KEY, sheet, notifier))
                    continue
                existing = index.get(key)
                if existing is not None:
                    merged = _merge_present(record, existing) if only_present_columns else Record(record)
                    _write_at(sheet, merged, existing.sheet_row, options)
                    merged.sheet_row = existing.sheet_row
                    index[key] = merged
                    outcomes.append(ReconcileOutcome(i, key, OutcomeStatus.UPDATED, sheet_row=existing.sheet_row))
                elif upsert:
                    written = write_records(
                        sheet, [record], replace(options, write_method=insert_method, first_row_index=None)
                    )
                    # 同一バッチ内で同じキーが再度来たら更新になる
                    index[key] = Record(record, sheet_row=written.row)
                    outcomes.append(ReconcileOutcome(i, key, OutcomeStatus.INSERTED, sheet_row=written.row))
                else:
                    outcomes.append(_failed(i, key, NO_MATCHING_ROW, sheet, notifier))

        if not options.dry_run:
            sheet.flush()
    finally:
        if owned:
            held.release()

    counts = {s: sum(1 for o in outcomes if o.status is s) for s in OutcomeStatus}
    logger.info(
        "reconciled %d record(s) into '%s': %d updated, %d inserted, %d failed",
        len(outcomes),
        sheet.name,
        counts[OutcomeStatus.UPDATED],
        counts[OutcomeStatus.INSERTED],
        counts[OutcomeStatus.FAILED],
    )
    return outcomes


def remove_records(
    sheet: Sheet,
    records: Sequence[Mapping[str, Any]],
    primary_key: PrimaryKey | None,
    *,
    read_options: ReadOptions | None = None,
    lock: TableLock | None = None,
    separator: str = DEFAULT_SEPARATOR,
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    notifier: Notifier | None = None,
) -> list[ReconcileOutcome]:
    """Delete the destination rows matching ``records`` (by key, or by ``sheet_row``)."""
    held, owned = _acquire(sheet, lock, lock_timeout)
    try:
        sheet.reload()
        outcomes: list[ReconcileOutcome] = []
        rows: list[int] = []
        if primary_key is None:
            for i, record in enumerate(records):
                row = getattr(record, "sheet_row", None)
                if row is None:
                    outcomes.append(_failed(i, None, NO_ROW_METADATA, sheet, notifier))
                    continue
                rows.append(row)
                outcomes.append(ReconcileOutcome(i, None, OutcomeStatus.REMOVED, sheet_row=row))
        else:
            options = replace(read_options or ReadOptions(), with_metadata=True)
            index = hash_records(read_records(sheet, options=options), primary_key, separator)
            for i, record in enumerate(records):
                key = make_key(record, primary_key, separator)
                if key is None:
                    outcomes.append(_failed(i, None, MISSING_KEY, sheet, notifier))
                    continue
                existing = index.pop(key, None)
                if existing is None:
                    outcomes.append(_failed(i, key, NO_MATCHING_ROW, sheet, notifier))
                    continue
                rows.append(existing.sheet_row)
                outcomes.append(ReconcileOutcome(i, key, OutcomeStatus.REMOVED, sheet_row=existing.sheet_row))

        delete_sheet_rows(sheet, rows)
        sheet.flush()
    finally:
        if owned:
            held.release()
    logger.info("removed %d row(s) from '%s'", len(set(rows)), sheet.name)
    return outcomes


def delete_sheet_rows(sheet: Sheet, rows: Iterable[int]) -> list[int]:
    """Delete rows given by their pre-deletion indices.

    Each deletion shifts later rows up by one, so the i-th row (ascending) is deleted at
    ``row - i``. Returns the indices actually passed to ``delete_rows``.
    """
    targets = sorted({r for r in rows if not is_empty_value(r)})
    adjusted = [row - i for i, row in enumerate(targets)]
    for row in adjusted:
        sheet.delete_rows(row, 1)
    return adjusted
