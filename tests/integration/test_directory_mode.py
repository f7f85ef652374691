from __future__ import annotations

from openpyxl import load_workbook

from tablesync.cli.__main__ import main as cli_main

"""Directory table mode: the source documents come from a sheet of the dashboard workbook."""

DIRECTORY_CONFIG = """source_directory: ./data
aggregation: school
destination:
  path: ./dashboard.xlsx
  sheet_name: Dashboard
  primary_key: [districtName, schoolName]
directory:
  sheet_name: Schools
  label_field: schoolName
  locator_field: progressFile
source:
  headers_row_index: 4
retry:
  max_attempts: 1
  backoff_seconds: 0
"""


def _add_directory_sheet(path, rows):
    wb = load_workbook(path)
    ws = wb.create_sheet("Schools")
    ws.append(["District Name", "School Name", "Progress File"])
    for row in rows:
        ws.append(row)
    wb.save(path)


def test_directory_rows_drive_the_batch(write_config, dashboard_workbook, progress_files, read_dashboard, capsys):
    write_config.write_text(DIRECTORY_CONFIG, encoding="utf-8")
    _add_directory_sheet(
        dashboard_workbook,
        [
            ["Lincoln", "North", "north.xlsx"],
            ["Lincoln", "Pending", None],
            ["Adams", "South", "south.xlsx"],
        ],
    )

    assert cli_main([]) == 0
    out = capsys.readouterr().out
    assert "has no progressFile; skipped" in out

    rows = read_dashboard(dashboard_workbook)
    assert set(rows) == {"North", "South"}
    assert rows["North"]["districtName"] == "Lincoln"
    assert rows["South"]["districtName"] == "Adams"
    # 一覧シートは書き換えない
    assert load_workbook(dashboard_workbook)["Schools"].max_row == 4


def test_remote_locator_fails_only_that_document(write_config, dashboard_workbook, progress_files, capsys):
    write_config.write_text(DIRECTORY_CONFIG, encoding="utf-8")
    _add_directory_sheet(
        dashboard_workbook,
        [
            ["Lincoln", "North", "https://docs.example.org/north"],
            ["Adams", "South", "south.xlsx"],
        ],
    )

    assert cli_main([]) == 2
    out = capsys.readouterr().out
    assert "only local workbook paths are supported" in out
    assert "success=1 failed=1" in out
