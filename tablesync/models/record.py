from __future__ import annotations

from typing import Any, Mapping, Sequence, Union

"""Record model for the tabular data-access layer.

A Record is one normalized-field-name-keyed row of data read from a grid. Row metadata
(sheet_row / array_index) lives on attributes rather than inside the mapping so that
records can be written back without the metadata leaking into destination columns.
"""

__all__ = [
    "Record",
    "Group",
    "PrimaryKey",
    "is_empty_value",
]

# Scalar field name or ordered list of field names (compound key)
PrimaryKey = Union[str, Sequence[str]]


def is_empty_value(value: Any) -> bool:
    """Return True for the grid's notion of an empty cell ("" or None)."""
    return value is None or (isinstance(value, str) and value == "")


class Record(dict):
    """Mapping of field name -> cell value with optional row metadata.

    Attributes:
        sheet_row: 1-based absolute row the record was read from (None if unknown)
        array_index: position of the record within the produced sequence
    """

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        *,
        sheet_row: int | None = None,
        array_index: int | None = None,
    ) -> None:
        super().__init__(values or {})
        self.sheet_row = sheet_row
        self.array_index = array_index

    def is_blank(self) -> bool:
        return all(is_empty_value(v) for v in self.values())

    def copy(self) -> Record:  # type: ignore[override]
        return Record(self, sheet_row=self.sheet_row, array_index=self.array_index)

    def __repr__(self) -> str:
        meta = ""
        if self.sheet_row is not None:
            meta = f", sheet_row={self.sheet_row}"
        return f"Record({dict.__repr__(self)}{meta})"


# 親 (index 0) + 子 (index 1..)
Group = list[Record]
