from __future__ import annotations

import threading

import pytest

from tablesync.excel.grid import NotFoundError
from tablesync.excel.memory import MemorySheet
from tablesync.excel.reader import ReadOptions, read_records
from tablesync.excel.writer import AtomicAppendBackend, WriteMethod, WriteOptions
from tablesync.models.outcome import OutcomeStatus
from tablesync.models.record import Record
from tablesync.services.locks import LockTimeoutError, ThreadTableLock
from tablesync.services.reconciler import delete_sheet_rows, reconcile, remove_records

KEY = ["districtName", "schoolName"]


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify_error(self, error, halt=False, context="", **details):
        self.calls.append((str(error), halt, context, details))


def test_update_in_place_by_compound_key(dashboard_sheet):
    outcomes = reconcile(dashboard_sheet, [{"districtName": "Lincoln", "schoolName": "South", "score": 99}], KEY)
    assert [(o.status, o.key, o.sheet_row) for o in outcomes] == [(OutcomeStatus.UPDATED, "Lincoln.South", 3)]
    assert dashboard_sheet.rows()[2] == ["Lincoln", "South", 99, ""]
    assert dashboard_sheet.flush_count == 1


def test_compound_key_parts_are_distinct_rows(dashboard_sheet):
    records = [
        {"districtName": "Lincoln", "schoolName": "North", "score": 1},
        {"districtName": "Lincoln", "schoolName": "South", "score": 2},
    ]
    outcomes = reconcile(dashboard_sheet, records, KEY)
    assert [o.sheet_row for o in outcomes] == [2, 3]
    assert [r["score"] for r in read_records(dashboard_sheet)] == [1, 2, 30]


def test_without_only_present_columns_absent_fields_are_blanked(dashboard_sheet):
    reconcile(dashboard_sheet, [{"districtName": "Lincoln", "schoolName": "North", "score": 5}], KEY)
    assert dashboard_sheet.rows()[1] == ["Lincoln", "North", 5, ""]


def test_only_present_columns_merges_destination_values(dashboard_sheet):
    reconcile(
        dashboard_sheet,
        [{"districtName": "Lincoln", "schoolName": "North", "score": 5, "notes": None}],
        KEY,
        only_present_columns=True,
    )
    assert dashboard_sheet.rows()[1] == ["Lincoln", "North", 5, "keep"]


def test_upsert_inserts_and_indexes_new_row(dashboard_sheet):
    records = [
        {"districtName": "Grant", "schoolName": "East", "score": 1},
        {"districtName": "Grant", "schoolName": "East", "score": 2},
    ]
    outcomes = reconcile(dashboard_sheet, records, KEY, upsert=True)
    assert [o.status for o in outcomes] == [OutcomeStatus.INSERTED, OutcomeStatus.UPDATED]
    assert outcomes[0].sheet_row == outcomes[1].sheet_row == 5
    rows = dashboard_sheet.rows()
    assert len(rows) == 5
    assert rows[4] == ["Grant", "East", 2, ""]


def test_no_matching_row_without_upsert(dashboard_sheet):
    notifier = RecordingNotifier()
    outcomes = reconcile(
        dashboard_sheet, [{"districtName": "Nowhere", "schoolName": "X"}], KEY, notifier=notifier
    )
    assert outcomes[0].status is OutcomeStatus.FAILED
    assert outcomes[0].reason == "no matching row"
    assert len(dashboard_sheet.rows()) == 4
    assert notifier.calls[0][1] is False
    assert notifier.calls[0][3]["error_type"] == "NO_MATCHING_ROW"


@pytest.mark.parametrize("bad_position", range(5))
def test_missing_key_fails_only_that_record(dashboard_sheet, bad_position):
    records = [{"districtName": "D", "schoolName": f"S{i}", "score": i} for i in range(5)]
    records[bad_position] = {"districtName": "D", "schoolName": "", "score": -1}
    outcomes = reconcile(dashboard_sheet, records, KEY, upsert=True)
    failed = [o for o in outcomes if o.status is OutcomeStatus.FAILED]
    assert [(o.index, o.reason) for o in failed] == [(bad_position, "missing key")]
    assert sum(1 for o in outcomes if o.status is OutcomeStatus.INSERTED) == 4


def test_reconcile_is_idempotent(dashboard_sheet):
    record = {"districtName": "Adams", "schoolName": "North", "score": 31, "notes": "y"}
    reconcile(dashboard_sheet, [record], KEY, upsert=True)
    first = dashboard_sheet.rows()
    reconcile(dashboard_sheet, [record], KEY, upsert=True)
    assert dashboard_sheet.rows() == first


def test_update_by_sheet_row_without_key(dashboard_sheet):
    rows = read_records(dashboard_sheet, options=ReadOptions(with_metadata=True))
    rows[1]["score"] = 77
    orphan = Record({"score": 1})
    outcomes = reconcile(dashboard_sheet, [rows[1], orphan], None)
    assert outcomes[0].status is OutcomeStatus.UPDATED and outcomes[0].sheet_row == 3
    assert outcomes[1].reason == "no row metadata"
    assert dashboard_sheet.rows()[2][2] == 77


def test_only_present_columns_requires_key(dashboard_sheet):
    with pytest.raises(ValueError):
        reconcile(dashboard_sheet, [], None, only_present_columns=True)


def test_lock_timeout_propagates_and_nothing_is_written(dashboard_sheet):
    lock = dashboard_sheet.create_lock()
    lock.acquire()
    try:
        with pytest.raises(LockTimeoutError):
            reconcile(dashboard_sheet, [{"districtName": "Lincoln", "schoolName": "North", "score": 0}], KEY, lock_timeout=0.05)
    finally:
        lock.release()
    assert dashboard_sheet.rows()[1][2] == 10


def test_own_lock_released_even_when_writer_fails(dashboard_sheet):
    with pytest.raises(NotFoundError):
        reconcile(dashboard_sheet, [{"x": 1}], "x", upsert=True, write_options=WriteOptions(end_header="Missing"))
    assert not dashboard_sheet.create_lock().locked


def test_caller_lock_is_not_released(dashboard_sheet):
    lock = ThreadTableLock("shared")
    reconcile(dashboard_sheet, [{"districtName": "Lincoln", "schoolName": "North"}], KEY, lock=lock)
    assert lock.locked
    lock.release()


def test_concurrent_reconciles_do_not_duplicate_keys(dashboard_sheet):
    def worker(score):
        reconcile(dashboard_sheet, [{"districtName": "New", "schoolName": "One", "score": score}], KEY, upsert=True)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    keys = [(r["districtName"], r["schoolName"]) for r in read_records(dashboard_sheet)]
    assert keys.count(("New", "One")) == 1


def test_delete_sheet_rows_adjusts_indices():
    sheet = MemorySheet([["id"]] + [[f"r{i}"] for i in range(2, 12)])
    adjusted = delete_sheet_rows(sheet, [8, 3, 5, 3])
    assert adjusted == [3, 4, 6]
    remaining = [r["id"] for r in read_records(sheet)]
    assert remaining == [f"r{i}" for i in range(2, 12) if i not in (3, 5, 8)]
    assert len(remaining) == 7


def test_remove_records_by_key(dashboard_sheet):
    records = [
        {"districtName": "Adams", "schoolName": "North"},
        {"districtName": "Lincoln", "schoolName": "North"},
        {"districtName": "Nobody", "schoolName": "Here"},
        {"schoolName": "NoDistrict"},
    ]
    outcomes = remove_records(dashboard_sheet, records, KEY)
    assert [o.status for o in outcomes] == [
        OutcomeStatus.REMOVED,
        OutcomeStatus.REMOVED,
        OutcomeStatus.FAILED,
        OutcomeStatus.FAILED,
    ]
    assert [o.reason for o in outcomes[2:]] == ["no matching row", "missing key"]
    assert dashboard_sheet.rows() == [["District Name", "School Name", "Score", "Notes"], ["Lincoln", "South", 20, ""]]
    assert not dashboard_sheet.create_lock().locked


def test_update_with_atomic_append_backend_stays_in_place():
    sheet = MemorySheet([["School Name", "Score"], ["North", 1]])
    options = WriteOptions(write_method=WriteMethod.APPEND_ROW, backend=AtomicAppendBackend())
    records = [{"schoolName": "North", "score": 5}, {"schoolName": "South", "score": 2}]

    outcomes = reconcile(sheet, records, "schoolName", write_options=options, upsert=True)
    assert [(o.status, o.sheet_row) for o in outcomes] == [(OutcomeStatus.UPDATED, 2), (OutcomeStatus.INSERTED, 3)]
    assert sheet.rows() == [["School Name", "Score"], ["North", 5], ["South", 2]]


def test_destination_is_reloaded_after_lock_is_taken(dashboard_sheet):
    events = []

    class TracingLock(ThreadTableLock):
        def acquire(self, timeout=30.0):
            events.append("acquire")
            super().acquire(timeout)

    dashboard_sheet.reload = lambda: events.append("reload")
    reconcile(dashboard_sheet, [{"districtName": "Lincoln", "schoolName": "North", "score": 1}], KEY, lock=TracingLock())
    remove_records(dashboard_sheet, [{"districtName": "Adams", "schoolName": "North"}], KEY, lock=TracingLock())
    assert events == ["acquire", "reload", "acquire", "reload"]
