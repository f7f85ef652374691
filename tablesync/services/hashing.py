from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..models.record import PrimaryKey, Record, is_empty_value

"""Index records by a scalar or compound primary key."""

__all__ = [
    "DEFAULT_SEPARATOR",
    "key_fields",
    "canonical_key_part",
    "make_key",
    "hash_records",
    "hash_records_many_to_one",
]

DEFAULT_SEPARATOR = "."


def key_fields(primary_key: PrimaryKey) -> list[str]:
    if isinstance(primary_key, str):
        return [primary_key]
    return list(primary_key)


def canonical_key_part(value: Any) -> str:
    # 1.0 と "1" を同じキーとして扱う
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def make_key(record: Mapping[str, Any], primary_key: PrimaryKey, separator: str = DEFAULT_SEPARATOR) -> str | None:
    """Lookup key for ``record``, or None when any key field is empty."""
    parts: list[str] = []
    for name in key_fields(primary_key):
        value = record.get(name)
        if is_empty_value(value):
            return None
        parts.append(canonical_key_part(value))
    return separator.join(parts)


def hash_records(
    records: Iterable[Record], primary_key: PrimaryKey, separator: str = DEFAULT_SEPARATOR
) -> dict[str, Record]:
    """key -> record. Records without a key are skipped; a duplicate key keeps the last record."""
    hashed: dict[str, Record] = {}
    for record in records:
        key = make_key(record, primary_key, separator)
        if key is not None:
            hashed[key] = record
    return hashed


def hash_records_many_to_one(
    records: Iterable[Record], primary_key: PrimaryKey, separator: str = DEFAULT_SEPARATOR
) -> dict[str, list[Record]]:
    """key -> every record sharing that key, in input order."""
    hashed: dict[str, list[Record]] = {}
    for record in records:
        key = make_key(record, primary_key, separator)
        if key is not None:
            hashed.setdefault(key, []).append(record)
    return hashed

