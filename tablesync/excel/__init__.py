"""Tabular data access: providers, Grid Reader and Table Writer."""

from .grid import EMPTY_RANGE, GridRange, NotFoundError, Sheet, TransientIOError
from .headers import HeaderCase, normalize_header, normalize_headers
from .memory import MemorySheet
from .reader import ReadOptions, ValueMode, read_records
from .retry import RetryPolicy
from .workbook import WorkbookDocument, WorkbookSheet
from .writer import (
    AtomicAppendBackend,
    BulkWriteBackend,
    RemoteBatchBackend,
    WriteMethod,
    WriteOptions,
    write_records,
)

__all__ = [
    "EMPTY_RANGE",
    "GridRange",
    "NotFoundError",
    "Sheet",
    "TransientIOError",
    "HeaderCase",
    "normalize_header",
    "normalize_headers",
    "MemorySheet",
    "ReadOptions",
    "ValueMode",
    "read_records",
    "RetryPolicy",
    "WorkbookDocument",
    "WorkbookSheet",
    "AtomicAppendBackend",
    "BulkWriteBackend",
    "RemoteBatchBackend",
    "WriteMethod",
    "WriteOptions",
    "write_records",
]
