from __future__ import annotations

from pathlib import Path

from tablesync.cli.__main__ import main as cli_main


def test_step_walks_batch_one_document_per_call(
    write_config, dashboard_workbook, progress_files, broken_file, read_dashboard, last_json, capsys
):
    cursor_file = Path("cursor.json")
    args = ["step", "--cursor", str(cursor_file)]

    assert cli_main(args) == 2  # broken.xlsx
    first = last_json(capsys.readouterr().out)
    assert first["position"] == 1
    assert first["currentLabel"] == "north"
    assert first["totalCount"] == 3
    assert first["lastError"].startswith("There was an error importing data for broken")
    assert cursor_file.exists()

    assert cli_main(args) == 0
    second = last_json(capsys.readouterr().out)
    assert (second["position"], second["lastError"]) == (2, None)
    assert set(read_dashboard(dashboard_workbook)) == {"north"}

    assert cli_main(args) == 0
    done = last_json(capsys.readouterr().out)
    assert done["done"] is True
    assert len(done["errors"]) == 1
    assert not cursor_file.exists()
    assert set(read_dashboard(dashboard_workbook)) == {"north", "south"}


def test_step_without_documents(write_config, dashboard_workbook, capsys):
    assert cli_main(["step", "--cursor", "cursor.json"]) == 0
    assert "WARN no source items to process" in capsys.readouterr().out


def test_step_rejects_stale_cursor(write_config, dashboard_workbook, progress_files, capsys):
    Path("cursor.json").write_text('{"position": 0, "currentLabel": "x", "totalCount": 7}', encoding="utf-8")
    assert cli_main(["step", "--cursor", "cursor.json"]) == 1
    assert "ERROR step: cursor belongs to a batch of 7" in capsys.readouterr().out
