from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..excel.grid import NotFoundError, TransientIOError
from ..excel.headers import HeaderCase
from ..excel.reader import ReadOptions, ValueMode
from ..excel.retry import RetryPolicy
from ..excel.workbook import WorkbookDocument, WorkbookSheet
from ..excel.writer import WriteOptions
from ..logging.error_log import ErrorLogBuffer
from ..logging.notify import ErrorNotifier
from ..models.config_models import SyncConfig
from ..models.outcome import OutcomeStatus, ReconcileOutcome
from ..models.processing_result import BatchResult, ItemStat
from ..models.record import is_empty_value
from ..models.source_item import SourceItem
from .aggregation import AggregationContext, AggregationProfile, get_profile
from .batch_driver import BatchDriver
from .grouper import group_records
from .locks import TableLock
from .progress import ProgressTracker
from .table import SheetTable, TableRegistry

"""Service orchestration for the dashboard roll-up.

Wires the pieces together for one run:

1. build the table registry (destination dashboard, optional directory table)
2. list the source documents (directory table, else a scan for .xlsx files)
3. for every document: open -> read -> filter -> group -> summarize -> reconcile
4. aggregate per-item statistics and flush the error log once
"""

__all__ = [
    "ProcessingError",
    "DASHBOARD_TABLE",
    "DIRECTORY_TABLE",
    "SyncSession",
    "scan_excel_files",
    "build_registry",
    "load_source_items",
    "process_item",
    "resolve_locator",
    "process_all",
]

logger = logging.getLogger(__name__)

DASHBOARD_TABLE = "dashboard"
DIRECTORY_TABLE = "directory"


class ProcessingError(Exception):
    """Fatal batch-level error (missing source directory, unusable destination...)."""


def scan_excel_files(directory: Path) -> list[Path]:
    """Scan ``directory`` for .xlsx files (non-recursive), sorted by name.

    Raises:
        ProcessingError: the directory does not exist or cannot be read
    """
    if not directory.exists():
        raise ProcessingError(f"Directory not found: {directory}")
    if not directory.is_dir():
        raise ProcessingError(f"Path is not a directory: {directory}")
    try:
        # ~$ で始まるのは Excel のロックファイル
        return sorted(
            p for p in directory.iterdir()
            if p.is_file() and p.suffix == ".xlsx" and not p.name.startswith("~$")
        )
    except OSError as e:
        raise ProcessingError(f"Error reading directory {directory}: {e}") from e


def _retry_policy(config: SyncConfig) -> RetryPolicy:
    return RetryPolicy(max_attempts=config.retry.max_attempts, backoff_seconds=config.retry.backoff_seconds)


def _sheet_opener(path: str, sheet_name: str) -> Callable[[], WorkbookSheet]:
    def open_sheet() -> WorkbookSheet:
        try:
            return WorkbookDocument(path).sheet(sheet_name)
        except (NotFoundError, TransientIOError) as e:
            raise ProcessingError(str(e)) from e

    return open_sheet


def build_registry(config: SyncConfig) -> TableRegistry:
    """Registry holding the dashboard table and, when configured, the directory table."""
    case = HeaderCase.parse(config.header_case)
    dest = config.destination
    registry = TableRegistry()
    registry.register(
        SheetTable(
            DASHBOARD_TABLE,
            _sheet_opener(dest.path, dest.sheet_name),
            dest.key,
            write_options=WriteOptions(
                headers_row_index=dest.headers_row_index,
                header_case=case,
                chunk_size=config.chunking.write_chunk_size,
                retry=_retry_policy(config),
            ),
        )
    )
    if config.directory is not None:
        directory = config.directory
        registry.register(
            SheetTable(
                DIRECTORY_TABLE,
                _sheet_opener(directory.path or dest.path, directory.sheet_name),
                directory.label_field,
                read_options=ReadOptions(
                    headers_row_index=directory.headers_row_index,
                    header_case=case,
                    value_mode=ValueMode.HYPERLINK,
                    trim=True,
                ),
            )
        )
    return registry


def load_source_items(config: SyncConfig, registry: TableRegistry | None = None) -> list[SourceItem]:
    """Source documents of this run, in processing order."""
    registry = registry or build_registry(config)
    if config.directory is None or DIRECTORY_TABLE not in registry:
        return [
            SourceItem(
                label=p.stem,
                locator=str(p),
                sheet_name=config.source.sheet_name,
                sheet_index=config.source.sheet_index,
            )
            for p in scan_excel_files(Path(config.source_directory))
        ]

    directory = config.directory
    items: list[SourceItem] = []
    for row in registry.get(DIRECTORY_TABLE).get_rows():
        label = row.get(directory.label_field)
        locator = row.get(directory.locator_field)
        if is_empty_value(label):
            continue
        if is_empty_value(locator):
            logger.warning("directory row %s (%s) has no %s; skipped", row.sheet_row, label, directory.locator_field)
            continue
        items.append(
            SourceItem(
                label=str(label),
                locator=str(locator),
                sheet_name=config.source.sheet_name,
                sheet_index=config.source.sheet_index,
                fields=dict(row),
            )
        )
    return items


def resolve_locator(locator: str, base_dir: Path) -> Path:
    if "://" in locator:
        raise NotFoundError(f"only local workbook paths are supported: {locator}")
    path = Path(locator).expanduser()
    return path if path.is_absolute() or path.exists() else base_dir / path


def process_item(
    item: SourceItem,
    config: SyncConfig,
    destination: SheetTable,
    profile: AggregationProfile,
    *,
    lock: TableLock | None = None,
    notifier: ErrorNotifier | None = None,
    now: datetime | None = None,
) -> list[ReconcileOutcome]:
    """Roll one source document up into the destination table."""
    path = resolve_locator(item.locator, Path(config.source_directory))
    document = WorkbookDocument(path)
    source = SheetTable(
        item.label,
        lambda: document.sheet(item.sheet_name, item.sheet_index),
        read_options=ReadOptions(
            headers_row_index=config.source.headers_row_index,
            header_case=HeaderCase.parse(config.header_case),
            chunk_size=config.chunking.read_chunk_size,
            retry=_retry_policy(config),
        ),
    )

    headers = source.headers
    designator = profile.designator(headers)
    rows = [r for r in source.get_rows(refresh=False) if profile.keep(r, designator)]
    logger.info("%s: found %d data row(s)", item.label, len(rows))

    groups = group_records(rows, designator)
    extra = {"now": now} if now is not None else {}
    context = AggregationContext(item=item, headers=headers, cell_value=source.cell_value, **extra)
    summaries = profile.summarize(groups, context)
    if not summaries:
        logger.info("%s: nothing to reconcile", item.label)
        return []
    logger.debug("%s: summary %r", item.label, summaries)

    return destination.update_rows(
        summaries,
        lock,
        upsert=True,
        only_present_columns=True,
        lock_timeout=config.lock_timeout_seconds,
        notifier=notifier,
    )


@dataclass
class SyncSession:
    """Everything one run (or one CLI step) needs to process source items."""
    config: SyncConfig
    registry: TableRegistry
    profile: AggregationProfile
    notifier: ErrorNotifier
    # 処理順 (ラベルは重複しうる)
    outcomes: list[list[ReconcileOutcome]] = field(default_factory=list)

    @classmethod
    def create(cls, config: SyncConfig, error_log: ErrorLogBuffer | None = None) -> SyncSession:
        try:
            profile = get_profile(config.aggregation)
        except ValueError as e:
            raise ProcessingError(f"Invalid configuration: {e}") from e
        return cls(
            config=config,
            registry=build_registry(config),
            profile=profile,
            notifier=ErrorNotifier(error_log),
        )

    @property
    def destination(self) -> SheetTable:
        return self.registry.get(DASHBOARD_TABLE)

    def handle(self, item: SourceItem) -> list[ReconcileOutcome]:
        outcomes = process_item(item, self.config, self.destination, self.profile, notifier=self.notifier)
        self.outcomes.append(outcomes)
        return outcomes

    def load_items(self) -> list[SourceItem]:
        # 出力先を開けなければバッチ全体が無意味
        _ = self.destination.sheet
        return load_source_items(self.config, self.registry)

    def driver(self) -> BatchDriver:
        return BatchDriver(self.load_items(), self.handle, self.notifier)


def _count(outcomes: list[ReconcileOutcome], status: OutcomeStatus) -> int:
    return sum(1 for o in outcomes if o.status is status)


def process_all(config: SyncConfig) -> BatchResult:
    """Process every source document once.

    Raises:
        ProcessingError: fatal errors that prevent the batch from running at all
    """
    start_time = datetime.now(UTC)
    error_log = ErrorLogBuffer()
    session = SyncSession.create(config, error_log)
    items = session.load_items()

    item_stats: list[ItemStat] = []
    if not items:
        logger.warning("no source documents found")
        errors: tuple[str, ...] = ()
    else:
        with ProgressTracker(len(items)) as progress:
            current: dict[str, Any] = {}

            def handler(item: SourceItem) -> None:
                progress.start_item(item.label)
                current["started"] = time.perf_counter()
                current["outcomes"] = session.handle(item)

            def on_step(item: SourceItem, error: str | None) -> None:
                outcomes = current.get("outcomes", []) if error is None else []
                item_stats.append(
                    ItemStat(
                        label=item.label,
                        status="failed" if error else "success",
                        updated_rows=_count(outcomes, OutcomeStatus.UPDATED),
                        inserted_rows=_count(outcomes, OutcomeStatus.INSERTED),
                        failed_rows=_count(outcomes, OutcomeStatus.FAILED),
                        elapsed_seconds=time.perf_counter() - current.get("started", time.perf_counter()),
                        error=error,
                    )
                )
                progress.finish_item(success=error is None)
                progress.set_postfix(
                    ok=sum(1 for s in item_stats if s.error is None),
                    failed=sum(1 for s in item_stats if s.error),
                )

            errors = BatchDriver(items, handler, session.notifier).run(on_step)

    path = error_log.flush()
    if path is not None:
        logger.info("error log written to %s", path)

    end_time = datetime.now(UTC)
    return BatchResult(
        success_items=sum(1 for s in item_stats if s.status == "success"),
        failed_items=sum(1 for s in item_stats if s.status == "failed"),
        updated_rows=sum(s.updated_rows for s in item_stats),
        inserted_rows=sum(s.inserted_rows for s in item_stats),
        failed_rows=sum(s.failed_rows for s in item_stats),
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=(end_time - start_time).total_seconds(),
        item_stats=item_stats,
        errors=list(errors),
    )
