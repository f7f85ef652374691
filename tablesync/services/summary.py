from __future__ import annotations

from ..models.processing_result import BatchResult

"""SUMMARY line rendering.

Format:
    SUMMARY items={done}/{total} success={n} failed={n} updated={n} inserted={n}
    failed_rows={n} elapsed_sec={sec}
"""

__all__ = [
    "render_summary_line",
    "format_seconds",
]


def format_seconds(seconds: float) -> str:
    """Integral values without a fraction; tiny values without scientific notation."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(total_items: int, result: BatchResult) -> str:
    """Render the SUMMARY line of a batch run.

    >>> from datetime import datetime, timezone
    >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
    >>> r = BatchResult(2, 1, 2, 0, 1, t, t, 1.5)
    >>> render_summary_line(3, r)
    'SUMMARY items=3/3 success=2 failed=1 updated=2 inserted=0 failed_rows=1 elapsed_sec=1.5'
    """
    return (
        f"SUMMARY items={result.total_items}/{total_items} "
        f"success={result.success_items} "
        f"failed={result.failed_items} "
        f"updated={result.updated_rows} "
        f"inserted={result.inserted_rows} "
        f"failed_rows={result.failed_rows} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)}"
    )
