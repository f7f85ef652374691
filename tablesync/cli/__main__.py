from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import pandas as pd
from dotenv import load_dotenv

from ..config.loader import ConfigError, default_config_path, load_config
from ..excel.reader import ReadOptions, read_records
from ..excel.workbook import WorkbookDocument
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.config_models import SyncConfig
from ..models.cursor import BatchCursor
from ..services.batch_driver import NoItemsError
from ..services.orchestrator import ProcessingError, SyncSession, process_all, resolve_locator
from ..services.summary import render_summary_line

"""CLI entrypoint.

    python -m tablesync.cli [--config PATH] [--debug] [run]
    python -m tablesync.cli step --cursor .tablesync-cursor.json
    python -m tablesync.cli inspect

Exit codes: 0 every item succeeded, 2 at least one item failed, 1 fatal (config,
missing source directory, unusable destination).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

INSPECT_SAMPLE_ROWS = 3


def _load_env_file(path: Path, override: bool = False) -> None:
    """Load .env using python-dotenv (TABLESYNC_CONFIG etc.)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="tablesync", description="Spreadsheet roll-up into a summary dashboard")
    p.add_argument("--config", type=Path, default=None, help="Config YAML (default: $TABLESYNC_CONFIG or config/sync.yml)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command")
    sub.add_parser("run", help="Process every source document (default)")
    step = sub.add_parser("step", help="Process one source document and persist the cursor")
    step.add_argument("--cursor", type=Path, required=True, help="JSON file holding the batch cursor")
    sub.add_parser("inspect", help="Print headers and first rows of every source document")
    args = p.parse_args(argv)
    if args.command is None:
        args.command = "run"
    return args


def _run(cfg: SyncConfig, logger) -> int:
    try:
        result = process_all(cfg)
    except ProcessingError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL

    summary_line = render_summary_line(result.total_items, result)
    # log_summary が "SUMMARY " を付けるので除去
    log_summary(summary_line[len("SUMMARY "):])
    if result.failed_items > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def _step(cfg: SyncConfig, cursor_path: Path, logger) -> int:
    error_log = ErrorLogBuffer()
    try:
        session = SyncSession.create(cfg, error_log)
        driver = session.driver()
        if cursor_path.exists():
            cursor = BatchCursor.from_dict(json.loads(cursor_path.read_text(encoding="utf-8")))
        else:
            cursor = driver.start()
        next_cursor, error = driver.step_with_error(cursor)
    except NoItemsError as e:
        logger.warning(str(e))
        return EXIT_SUCCESS_ALL
    except (ProcessingError, ValueError) as e:
        logger.error(f"step: {e}")
        return EXIT_FATAL
    finally:
        error_log.flush()

    if next_cursor is None:
        cursor_path.unlink(missing_ok=True)
        errors = list(cursor.errors) + ([error] if error else [])
        print(json.dumps({"done": True, "errors": errors}, ensure_ascii=False))
    else:
        cursor_path.write_text(json.dumps(next_cursor.to_dict(), ensure_ascii=False), encoding="utf-8")
        print(json.dumps(next_cursor.to_dict(), ensure_ascii=False))
    return EXIT_PARTIAL_FAILURE if error else EXIT_SUCCESS_ALL


def _inspect(cfg: SyncConfig) -> int:
    try:
        session = SyncSession.create(cfg)
        items = session.load_items()
    except ProcessingError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    if not items:
        print("inspect: no source documents")
        return EXIT_SUCCESS_ALL

    for item in items:
        print(f"DOCUMENT: {item.label} ({item.locator})")
        try:
            path = resolve_locator(item.locator, Path(cfg.source_directory))
            sheet = WorkbookDocument(path).sheet(item.sheet_name, item.sheet_index)
            records = read_records(sheet, options=ReadOptions(headers_row_index=cfg.source.headers_row_index))
        except Exception as e:  # 1件の読み込み失敗で一覧表示を止めない
            print(f"  read_error: {e}")
            continue
        df = pd.DataFrame(records[:INSPECT_SAMPLE_ROWS])
        print(f"  SHEET: {sheet.name} rows={len(records)} cols={list(df.columns)}")
        if not df.empty:
            print(df.to_string(index=False, max_colwidth=30))
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # None のときのみ sys.argv を読む ([] はテストからの明示的な空引数)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"))
    config_path = args.config or default_config_path()
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "inspect":
        return _inspect(cfg)
    if args.command == "step":
        return _step(cfg, args.cursor, logger)

    logger.info(f"Processing documents from: {cfg.source_directory}")
    return _run(cfg, logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
