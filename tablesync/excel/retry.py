from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from .grid import TransientIOError

"""Bounded retry for chunked reads/writes.

Only ``TransientIOError`` is retried. Defaults reproduce the observed production
behaviour (one retry after ~100 s); callers and tests pass their own policy.
"""

__all__ = [
    "RetryPolicy",
    "DEFAULT_RETRY",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2  # 初回 + リトライ1回
    backoff_seconds: float = 101.0
    sleep: Callable[[float], None] = time.sleep

    def run(self, fn: Callable[[], T], *, description: str = "operation") -> T:
        attempt = 1
        while True:
            try:
                return fn()
            except TransientIOError as e:
                if attempt >= self.max_attempts:
                    logger.error("%s failed after %d attempt(s): %s", description, attempt, e)
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %ss",
                    description,
                    attempt,
                    self.max_attempts,
                    e,
                    self.backoff_seconds,
                )
                self.sleep(self.backoff_seconds)
                attempt += 1


DEFAULT_RETRY = RetryPolicy()
