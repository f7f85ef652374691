from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models.record import Group, Record, is_empty_value

"""Record Grouper: flat record sequence -> parent/child groups.

A record with a non-empty designator opens a new group; the records that follow without
one are its children (one action item per child, for example).
"""

__all__ = [
    "MalformedSourceError",
    "group_records",
]

logger = logging.getLogger(__name__)


class MalformedSourceError(Exception):
    """A child record appeared before any parent record."""

    def __init__(self, record: Record, position: int, designator_field: str) -> None:
        self.record = record
        self.position = position
        self.designator_field = designator_field
        row = f" (sheet row {record.sheet_row})" if getattr(record, "sheet_row", None) else ""
        super().__init__(
            f"record at position {position}{row} has no '{designator_field}' "
            f"and no open group to attach to: {dict(record)!r}"
        )


def group_records(records: Sequence[Record], designator_field: str) -> list[Group]:
    """Partition ``records`` in order into groups keyed by ``designator_field``.

    Raises:
        MalformedSourceError: the first record(s) carry no designator
    """
    groups: list[Group] = []
    for position, record in enumerate(records):
        if not is_empty_value(record.get(designator_field)):
            groups.append([record])
        elif groups:
            groups[-1].append(record)
        else:
            raise MalformedSourceError(record, position, designator_field)
    logger.debug("grouped %d record(s) into %d group(s) by '%s'", len(records), len(groups), designator_field)
    return groups
