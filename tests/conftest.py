# Shared pytest fixtures
from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook

from tablesync.excel.memory import MemorySheet
from tablesync.excel.reader import read_records
from tablesync.excel.workbook import WorkbookDocument
from tablesync.logging.init import reset_logging


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.delenv("TABLESYNC_CONFIG", raising=False)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
aggregation: school
header_case: camel
lock_timeout_seconds: 5
destination:
  path: ./dashboard.xlsx
  sheet_name: Dashboard
  headers_row_index: 1
  primary_key: schoolName
source:
  sheet_index: 0
  headers_row_index: 4
retry:
  max_attempts: 1
  backoff_seconds: 0
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "sync.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


DASHBOARD_HEADERS = [
    "District Name",
    "School Name",
    "Total Number of Teachers/Leaders",
    "Total Number of Goals",
    "Total Number of Action Steps",
    "Percent of Action Steps Completed",
    "Goals Met",
    "School's PL Strategy",
    "Comments",
]

SCHOOL_HEADERS = [
    "Last Name",
    "First Name",
    "Focus Standard",
    "Action Steps",
    "Status of Action Steps",
    "Progress Indicator",
    "Status of Goal",
    "Notes",
]


def write_workbook(path: Path, rows: list[list[Any]], *, title: str = "Sheet1", cells: dict[str, Any] | None = None) -> Path:
    """Save a single-sheet workbook; ``cells`` sets extra A1 cells after the rows."""
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    for a1, value in (cells or {}).items():
        ws[a1] = value
    wb.save(path)
    return path


def school_rows(teachers: list[tuple[str, list[tuple[str, str]]]], goal_status: str = "Met") -> list[list[Any]]:
    """Progress sheet body: 3 title rows, headers on row 4, one group per teacher."""
    rows: list[list[Any]] = [["STARR Progress"], [None], [None], list(SCHOOL_HEADERS)]
    for last_name, steps in teachers:
        for i, (step, status) in enumerate(steps):
            if i == 0:
                rows.append([last_name, "T", "RL.1", step, status, "Impact", goal_status, None])
            else:
                rows.append([None, None, None, step, status, None, None, None])
    return rows


@pytest.fixture()
def make_workbook():
    return write_workbook


@pytest.fixture()
def make_school_rows():
    return school_rows


@pytest.fixture()
def dashboard_sheet() -> MemorySheet:
    return MemorySheet(
        [
            ["District Name", "School Name", "Score", "Notes"],
            ["Lincoln", "North", 10, "keep"],
            ["Lincoln", "South", 20, ""],
            ["Adams", "North", 30, "x"],
        ],
        name="Dashboard",
    )


@pytest.fixture()
def dashboard_workbook(temp_workdir: Path) -> Path:
    return write_workbook(temp_workdir / "dashboard.xlsx", [list(DASHBOARD_HEADERS)], title="Dashboard")


@pytest.fixture()
def progress_files(temp_workdir: Path) -> dict[str, Path]:
    """Two well-formed progress workbooks in ./data."""
    data = temp_workdir / "data"
    return {
        "north": write_workbook(
            data / "north.xlsx",
            school_rows([("Smith", [("s1", "Completed"), ("s2", "In Progress")]), ("Jones", [("t1", "Completed")])]),
            cells={"D3": "PL Strategy: Coaching cycles"},
        ),
        "south": write_workbook(data / "south.xlsx", school_rows([("Lee", [("u1", "Upcoming")])])),
    }


@pytest.fixture()
def broken_file(temp_workdir: Path) -> Path:
    # 先頭のデータ行に氏名がない
    rows = school_rows([])
    rows.append([None, None, None, "orphan step", "Completed", None, None, None])
    return write_workbook(temp_workdir / "data" / "broken.xlsx", rows)


def _dashboard_rows(path: Path) -> dict[str, Any]:
    sheet = WorkbookDocument(path).sheet("Dashboard")
    return {r["schoolName"]: r for r in read_records(sheet)}


def _error_log_entries(logs_dir: Path) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    for log in sorted(logs_dir.glob("errors-*.log")):
        entries.extend(json.loads(line) for line in log.read_text(encoding="utf-8").splitlines())
    return entries


def _last_json_line(out: str) -> dict[str, Any]:
    return json.loads([line for line in out.splitlines() if line.startswith("{")][-1])


@pytest.fixture()
def read_dashboard():
    return _dashboard_rows


@pytest.fixture()
def read_error_log():
    return _error_log_entries


@pytest.fixture()
def last_json():
    return _last_json_line
