from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

"""Processing result models for a batch run.

Aggregates per-item statistics into the figures rendered on the SUMMARY line.
"""

__all__ = [
    "ItemStat",
    "BatchResult",
]


@dataclass(frozen=True)
class ItemStat:
    """Per-item processing statistics."""
    label: str
    status: str  # success/failed
    updated_rows: int
    inserted_rows: int
    failed_rows: int  # missing key / no matching row
    elapsed_seconds: float
    error: str | None = None


@dataclass(frozen=True)
class BatchResult:
    """Aggregated results of one batch run."""
    success_items: int
    failed_items: int
    updated_rows: int
    inserted_rows: int
    failed_rows: int
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    item_stats: list[ItemStat] | None = None
    errors: list[str] | None = None  # cursor.errors の最終値

    @property
    def total_items(self) -> int:
        return self.success_items + self.failed_items
