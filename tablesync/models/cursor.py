from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

"""Batch cursor model for stepwise (resumable) batch processing.

The cursor is the only state carried between driver steps. It is owned by the batch
driver during a run and handed to the caller after every step; persisting it (for example
across UI round-trips or CLI invocations) is the caller's responsibility.
"""

__all__ = [
    "BatchCursor",
]


@dataclass(frozen=True)
class BatchCursor:
    """Resumable position/state token.

    Attributes:
        position: 0-based index of the next item to process
        current_label: label of the item at ``position`` (for progress display)
        total_count: number of items in the batch
        last_error: error produced by the step that returned this cursor, if any
        errors: every error produced so far in this run
    """
    position: int
    current_label: str
    total_count: int
    last_error: str | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)

    def advance(self, next_label: str, error: str | None) -> BatchCursor:
        errors = self.errors + (error,) if error else self.errors
        return replace(
            self,
            position=self.position + 1,
            current_label=next_label,
            last_error=error,
            errors=errors,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "currentLabel": self.current_label,
            "totalCount": self.total_count,
            "lastError": self.last_error,
            "errors": list(self.errors),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> BatchCursor:
        try:
            return BatchCursor(
                position=int(data["position"]),
                current_label=str(data.get("currentLabel", "")),
                total_count=int(data["totalCount"]),
                last_error=data.get("lastError"),
                errors=tuple(data.get("errors") or ()),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"invalid cursor data: {e}") from e
