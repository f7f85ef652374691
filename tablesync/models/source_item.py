from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Source document descriptor consumed by the batch driver."""

__all__ = [
    "SourceItem",
]


@dataclass(frozen=True)
class SourceItem:
    """One source document to process.

    ``fields`` holds the directory row the item was built from so that aggregation
    callbacks can copy identifying columns (e.g. districtName) into the summary.
    """
    label: str
    locator: str  # ファイルパス (ディレクトリ表のリンク or スキャン結果)
    sheet_name: str | None = None
    sheet_index: int = 0
    fields: dict[str, Any] = field(default_factory=dict)
