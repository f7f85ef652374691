from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display with tqdm (TTY only).

One bar for the whole batch, advanced once per source item. In non-TTY environments
(CI, cron) no bar is created so logs stay free of control sequences.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Batch progress bar; a no-op when stdout is not a terminal."""

    def __init__(self, total_items: int, *, description: str = "Updating dashboard") -> None:
        self.total_items = total_items
        self.description = description
        self.current_item = 0
        self.failed_items = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None = None
        if self.enabled:
            self.pbar = tqdm(
                total=total_items,
                desc=description,
                unit="doc",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )

    def start_item(self, label: str) -> None:
        self.current_item += 1
        if self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({label})")

    def finish_item(self, success: bool = True) -> None:
        if not success:
            self.failed_items += 1
        if self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_description(self.description)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
