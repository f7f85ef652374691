from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any

from ..models.cursor import BatchCursor
from ..models.source_item import SourceItem
from .reconciler import Notifier

"""Batch Continuation Driver.

Processes source items one per ``step``. The cursor returned by each step is the only
state needed to continue, so a batch can be driven from an event loop, a scheduler or
separate CLI invocations. A failing item is reported and recorded on the cursor; it never
stops the remaining items.
"""

__all__ = [
    "BatchState",
    "BatchDriver",
    "NoItemsError",
]

logger = logging.getLogger(__name__)

ItemHandler = Callable[[SourceItem], Any]
StepCallback = Callable[[SourceItem, "str | None"], None]


class NoItemsError(Exception):
    """Raised when a batch is started without any source items."""


class BatchState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"


def import_error_context(label: str) -> str:
    return f"There was an error importing data for {label}"


class BatchDriver:
    """Drive ``handler`` over ``items`` one item per step."""

    def __init__(
        self,
        items: Sequence[SourceItem],
        handler: ItemHandler,
        notifier: Notifier | None = None,
    ) -> None:
        self.items = list(items)
        self.handler = handler
        self.notifier = notifier
        self._started = False

    def start(self) -> BatchCursor:
        if not self.items:
            raise NoItemsError("no source items to process")
        self._started = True
        logger.info("starting batch of %d item(s)", len(self.items))
        return BatchCursor(position=0, current_label=self.items[0].label, total_count=len(self.items))

    def state(self, cursor: BatchCursor | None) -> BatchState:
        if cursor is not None:
            return BatchState.DONE if cursor.position >= cursor.total_count else BatchState.RUNNING
        return BatchState.DONE if self._started else BatchState.IDLE

    def step_with_error(self, cursor: BatchCursor) -> tuple[BatchCursor | None, str | None]:
        """Like ``step`` but also returns the error message of the processed item."""
        if cursor.total_count != len(self.items):
            raise ValueError(
                f"cursor belongs to a batch of {cursor.total_count} item(s), not {len(self.items)}"
            )
        if not 0 <= cursor.position < len(self.items):
            raise ValueError(f"cursor position {cursor.position} is out of range")
        self._started = True

        item = self.items[cursor.position]
        error: str | None = None
        logger.debug("processing item %d/%d: %s", cursor.position + 1, len(self.items), item.label)
        try:
            self.handler(item)
        except Exception as e:  # バッチ境界: 1件の失敗で全体を止めない
            context = import_error_context(item.label)
            error = f"{context}: {e}"
            if self.notifier is not None:
                self.notifier.notify_error(e, halt=False, context=context, document=item.label)
            else:
                logger.error(error)

        next_position = cursor.position + 1
        if next_position >= len(self.items):
            logger.info("batch done (%d error(s))", len(cursor.errors) + (1 if error else 0))
            return None, error
        return cursor.advance(self.items[next_position].label, error), error

    def step(self, cursor: BatchCursor) -> BatchCursor | None:
        """Process the item at ``cursor.position``.

        Returns the cursor naming the next item, or None once the batch is exhausted. The
        returned None carries no error for the last item; callers that need it use
        ``step_with_error``.
        """
        next_cursor, _ = self.step_with_error(cursor)
        return next_cursor

    def run(self, on_step: StepCallback | None = None) -> tuple[str, ...]:
        """Run every step; returns the error messages of the failed items."""
        cursor: BatchCursor | None = self.start()
        errors: list[str] = []
        while cursor is not None:
            item = self.items[cursor.position]
            cursor, error = self.step_with_error(cursor)
            if error:
                errors.append(error)
            if on_step is not None:
                on_step(item, error)
        return tuple(errors)
