from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Per-record reconciliation outcome."""

__all__ = [
    "OutcomeStatus",
    "ReconcileOutcome",
    "MISSING_KEY",
    "NO_MATCHING_ROW",
    "NO_ROW_METADATA",
]

MISSING_KEY = "missing key"
NO_MATCHING_ROW = "no matching row"
NO_ROW_METADATA = "no row metadata"


class OutcomeStatus(Enum):
    UPDATED = "updated"
    INSERTED = "inserted"
    REMOVED = "removed"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconcileOutcome:
    index: int  # 入力シーケンス内の位置
    key: str | None  # lookup key (None when the record had no usable key)
    status: OutcomeStatus
    reason: str | None = None  # FAILED 時のみ
    sheet_row: int | None = None  # 書き込み/削除した行

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED
