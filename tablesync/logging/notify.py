from __future__ import annotations

import logging
import re

from ..models.error_record import ErrorRecord
from .error_log import ErrorLogBuffer

"""Error notification sink.

Per-item and per-record failures are reported here instead of being raised: the error is
logged at ERROR level and buffered as an ``ErrorRecord`` for the run's error log.
"""

__all__ = [
    "ErrorNotifier",
    "error_type_of",
]

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def error_type_of(error: BaseException) -> str:
    """Exception class name in UPPER_SNAKE (``LockTimeoutError`` -> ``LOCK_TIMEOUT_ERROR``)."""
    return _CAMEL_BOUNDARY_RE.sub("_", type(error).__name__).upper()


class ErrorNotifier:
    """Logs errors and records them in an ErrorLogBuffer."""

    def __init__(self, buffer: ErrorLogBuffer | None = None) -> None:
        self.buffer = buffer if buffer is not None else ErrorLogBuffer()
        self.count = 0

    def notify_error(
        self,
        error: BaseException | str,
        halt: bool = False,
        context: str = "",
        *,
        error_type: str | None = None,
        document: str = "",
        sheet: str = "",
        row: int | None = None,
    ) -> None:
        """Report ``error``; re-raise it when ``halt`` is set and it is an exception."""
        message = str(error)
        if isinstance(error, BaseException):
            kind = error_type or error_type_of(error)
        else:
            kind = error_type or "RECORD_FAILED"
        if context:
            logger.error("%s: %s", context, message)
        else:
            logger.error("%s", message)
        self.buffer.append(
            ErrorRecord.create(
                document=document,
                sheet=sheet,
                row=row if row is not None else -1,
                error_type=kind,
                message=f"{context}: {message}" if context else message,
            )
        )
        self.count += 1
        if halt:
            if isinstance(error, BaseException):
                raise error
            raise RuntimeError(message)
