from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from enum import Enum
from typing import Any

from .grid import GridRange, NotFoundError, Sheet

"""Header handling: field-name normalization and header-bounded range resolution.

Normalization turns a raw header cell into a field name that always starts with a letter:

    "First Name"                       -> firstName
    "Market Cap (millions)"            -> marketCapMillions
    "1 number at the beginning is ..." -> numberAtTheBeginningIsIgnored
"""

__all__ = [
    "HeaderCase",
    "normalize_header",
    "normalize_headers",
    "get_start_end_columns",
    "get_headers_range",
    "get_body_range",
    "get_header_column",
    "get_range_by_name",
    "get_flattened_values",
]

logger = logging.getLogger(__name__)


class HeaderCase(Enum):
    CAMEL = "camel"
    SNAKE = "snake"
    LOWER = "lower"
    NONE = "none"

    @classmethod
    def parse(cls, value: HeaderCase | str | None) -> HeaderCase:
        if value is None:
            return cls.CAMEL
        if isinstance(value, HeaderCase):
            return value
        aliases = {"camelcase": "camel", "snake_case": "snake", "lowercase": "lower"}
        text = aliases.get(value.lower(), value.lower())
        try:
            return cls(text)
        except ValueError as e:
            raise ValueError(f"unknown header case: {value!r}") from e


_NON_WORD_RE = re.compile(r"\W", re.ASCII)
_LEADING_NON_LETTER_RE = re.compile(r"^[^A-Za-z]+")


def _is_alnum(ch: str) -> bool:
    return ("A" <= ch <= "Z") or ("a" <= ch <= "z") or ("0" <= ch <= "9")


def _camel(header: str) -> str:
    key = ""
    upper = False
    for ch in header:
        if ch == " " and key:
            upper = True
            continue
        if not _is_alnum(ch):
            continue
        if not key and ch.isdigit():
            continue  # 先頭は英字
        if upper:
            upper = False
            key += ch.upper()
        else:
            key += ch.lower()
    return key


def normalize_header(header: Any, case: HeaderCase | str = HeaderCase.CAMEL) -> str:
    """Normalize one header cell to a field name ("" when nothing usable remains)."""
    case = HeaderCase.parse(case)
    text = "" if header is None else str(header)
    if case is HeaderCase.NONE:
        return text
    if case is HeaderCase.CAMEL:
        return _camel(text)
    text = _LEADING_NON_LETTER_RE.sub("", text)
    if case is HeaderCase.SNAKE:
        return _NON_WORD_RE.sub("_", text).lower()
    return _NON_WORD_RE.sub("", text).lower()


def normalize_headers(headers: Sequence[Any], case: HeaderCase | str = HeaderCase.CAMEL) -> list[str]:
    """Normalize a header row.

    Two distinct headers that normalize to the same field name collide; the later column
    wins when records are built. A warning names the colliding headers.
    """
    keys = [normalize_header(h, case) for h in headers]
    seen: dict[str, Any] = {}
    for raw, key in zip(headers, keys):
        if not key:
            continue
        if key in seen and seen[key] != raw:
            logger.warning(
                "headers %r and %r both normalize to '%s'; the later column wins",
                seen[key],
                raw,
                key,
            )
        seen[key] = raw
    return keys


def get_start_end_columns(
    headers: Sequence[Any], start_header: str | None, end_header: str | None, last_col: int
) -> tuple[int, int]:
    """Resolve the 1-based column span between two exact-match header cells (inclusive)."""
    values = list(headers)
    end_col = last_col
    if end_header:
        if end_header not in values:
            raise NotFoundError(f'endHeader "{end_header}" column not found')
        end_col = values.index(end_header) + 1
    start_col = 1
    if start_header:
        if start_header not in values:
            raise NotFoundError(f'startHeader "{start_header}" column not found')
        start_col = values.index(start_header) + 1
    if end_col >= start_col:
        return start_col, end_col
    return end_col, start_col


def _header_row(sheet: Sheet, headers_row_index: int) -> tuple[list[Any], int]:
    last_col = sheet.last_column()
    if last_col <= 0:
        raise NotFoundError(f"sheet '{sheet.name}' has no header columns")
    return sheet.get_values(GridRange(headers_row_index, 1, 1, last_col))[0], last_col


def get_headers_range(
    sheet: Sheet,
    headers_row_index: int = 1,
    start_header: str | None = None,
    end_header: str | None = None,
) -> GridRange:
    headers, last_col = _header_row(sheet, headers_row_index)
    start_col, end_col = get_start_end_columns(headers, start_header, end_header, last_col)
    return GridRange(headers_row_index, start_col, 1, end_col - start_col + 1)


def get_body_range(
    sheet: Sheet,
    headers_row_index: int = 1,
    start_header: str | None = None,
    end_header: str | None = None,
    *,
    num_rows: int | None = None,
) -> GridRange:
    headers, last_col = _header_row(sheet, headers_row_index)
    start_col, end_col = get_start_end_columns(headers, start_header, end_header, last_col)
    if num_rows is None:
        num_rows = sheet.last_row() - headers_row_index
    return GridRange(headers_row_index + 1, start_col, max(num_rows, 0), end_col - start_col + 1)


def get_header_column(
    sheet: Sheet, header: str, headers_row_index: int = 1, *, strict: bool = True
) -> int:
    """Column index of the header cell matching ``header`` exactly, or 0 if absent."""
    try:
        headers, _ = _header_row(sheet, headers_row_index)
    except NotFoundError:
        headers = []
    column = headers.index(header) + 1 if header in headers else 0
    if strict and column == 0:
        raise NotFoundError(f"Column '{header}' not found on sheet '{sheet.name}'")
    logger.debug("header '%s' is on column %d", header, column)
    return column


def get_range_by_name(sheet: Sheet, name: str, *, strict: bool = True) -> GridRange | None:
    """Named range scoped to ``sheet``; names copied with a sheet prefix match too."""
    rng = sheet.named_range(name)
    if rng is None and strict:
        raise NotFoundError(f'Missing named range "{name}" on sheet "{sheet.name}"')
    return rng


def get_flattened_values(sheet: Sheet, name: str) -> list[Any]:
    """Non-empty values of a named range, row by row. Missing range -> []."""
    rng = get_range_by_name(sheet, name, strict=False)
    if rng is None:
        logger.warning("No range named %s", name)
        return []
    return [v for row in sheet.get_values(rng) for v in row if v is not None and v != ""]
