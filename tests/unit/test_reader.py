from __future__ import annotations

from datetime import datetime

import pytest

from tablesync.excel.grid import GridRange, NotFoundError, TransientIOError
from tablesync.excel.headers import HeaderCase
from tablesync.excel.memory import MemorySheet
from tablesync.excel.reader import ReadOptions, ValueMode, read_records
from tablesync.excel.retry import RetryPolicy


def _sheet() -> MemorySheet:
    return MemorySheet(
        [
            ["First Name", "Last Name", "Grade", ""],
            ["Ada", "Lovelace", 3, "ignored"],
            ["", "", "", ""],
            [" Alan ", "Turing", 4, ""],
        ]
    )


def test_reads_records_skipping_blank_rows_and_headers():
    records = read_records(_sheet())
    assert records == [
        {"firstName": "Ada", "lastName": "Lovelace", "grade": 3},
        {"firstName": " Alan ", "lastName": "Turing", "grade": 4},
    ]


def test_metadata_and_trim():
    records = read_records(_sheet(), options=ReadOptions(with_metadata=True, trim=True))
    assert records[1]["firstName"] == "Alan"
    assert [r.sheet_row for r in records] == [2, 4]
    assert [r.array_index for r in records] == [0, 1]
    # メタデータはキーに含まれない
    assert "sheetRow" not in records[0]


def test_keep_blank_rows_and_headers():
    records = read_records(_sheet(), options=ReadOptions(keep_blank_rows=True, keep_blank_headers=True))
    assert len(records) == 3
    assert records[1] == {"firstName": "", "lastName": "", "grade": "", "": ""}
    assert records[0][""] == "ignored"


def test_fewer_than_two_rows_is_empty():
    assert read_records(MemorySheet([["only", "headers"]])) == []
    assert read_records(MemorySheet([])) == []


def test_explicit_range_uses_row_above_as_headers():
    sheet = MemorySheet([["title"], ["a", "b"], [1, 2], [3, 4], [5, 6]])
    records = read_records(sheet, GridRange(4, 1, 2, 2), ReadOptions(headers_row_index=2, with_metadata=True))
    assert records == [{"a": 3, "b": 4}, {"a": 5, "b": 6}]
    assert records[0].sheet_row == 4

    records = read_records(sheet, GridRange(3, 1, 1, 2))
    assert records == [{"a": 1, "b": 2}]


def test_start_and_end_header_span():
    sheet = MemorySheet([["a", "b", "c", "d"], [1, 2, 3, 4]])
    records = read_records(sheet, options=ReadOptions(start_header="d", end_header="b"))
    assert records == [{"b": 2, "c": 3, "d": 4}]


def test_missing_start_header():
    with pytest.raises(NotFoundError, match="nope"):
        read_records(_sheet(), options=ReadOptions(start_header="nope"))


def test_value_modes():
    sheet = MemorySheet(
        [["Link", "Total", "When", "Done"], ["School A", 0.5, datetime(2024, 3, 5), True]],
        formulas={(2, 2): "=A9/2"},
        links={(2, 1): "https://example.com/a.xlsx"},
        number_formats={(2, 2): "0.0%"},
    )
    assert read_records(sheet, options=ReadOptions(value_mode=ValueMode.HYPERLINK))[0]["link"] == "https://example.com/a.xlsx"
    display = read_records(sheet, options=ReadOptions(value_mode=ValueMode.DISPLAY))[0]
    assert display == {"link": "School A", "total": "50.0%", "when": "3/5/2024", "done": "TRUE"}
    formula = read_records(sheet, options=ReadOptions(value_mode=ValueMode.FORMULA))[0]
    assert formula["total"] == "=A9/2"
    assert formula["link"] == "School A"


def test_header_case_option():
    sheet = MemorySheet([["First Name"], ["x"]])
    assert read_records(sheet, options=ReadOptions(header_case=HeaderCase.SNAKE)) == [{"first_name": "x"}]
    assert read_records(sheet, options=ReadOptions(header_case=HeaderCase.NONE)) == [{"First Name": "x"}]


def test_chunked_read_equals_unchunked():
    rows = [["id", "name"]] + [[i, f"n{i}"] if i % 7 else ["", ""] for i in range(1, 24)]
    sheet = MemorySheet(rows)
    plain = read_records(sheet, options=ReadOptions(with_metadata=True))
    chunked = read_records(sheet, options=ReadOptions(with_metadata=True, use_chunks=True, chunk_size=5))
    assert chunked == plain
    assert [r.sheet_row for r in chunked] == [r.sheet_row for r in plain]


class FlakySheet(MemorySheet):
    def __init__(self, *args, failures: int = 1, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures
        self.calls = 0

    def get_values(self, rng):
        if rng.row > 1:
            self.calls += 1
            if self.failures > 0:
                self.failures -= 1
                raise TransientIOError("quota exceeded")
        return super().get_values(rng)


def test_chunk_is_retried_once_after_backoff():
    sleeps: list[float] = []
    sheet = FlakySheet([["a"], [1], [2], [3]], failures=1)
    policy = RetryPolicy(max_attempts=2, backoff_seconds=101.0, sleep=sleeps.append)
    records = read_records(sheet, options=ReadOptions(use_chunks=True, chunk_size=2, retry=policy))
    assert records == [{"a": 1}, {"a": 2}, {"a": 3}]
    assert sleeps == [101.0]


def test_chunk_failure_propagates_after_retries():
    sheet = FlakySheet([["a"], [1], [2]], failures=5)
    policy = RetryPolicy(max_attempts=2, backoff_seconds=0, sleep=lambda s: None)
    with pytest.raises(TransientIOError):
        read_records(sheet, options=ReadOptions(use_chunks=True, chunk_size=1, retry=policy))
    assert sheet.calls == 2
