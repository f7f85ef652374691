from __future__ import annotations

import pytest

from tablesync.models.cursor import BatchCursor


def test_advance_accumulates_errors():
    cursor = BatchCursor(position=0, current_label="A", total_count=3)
    cursor = cursor.advance("B", "oops")
    cursor = cursor.advance("C", None)
    assert cursor.position == 2
    assert cursor.current_label == "C"
    assert cursor.last_error is None
    assert cursor.errors == ("oops",)


def test_dict_form_uses_camel_case_keys():
    cursor = BatchCursor(position=1, current_label="B", total_count=3, last_error="x", errors=("x",))
    assert cursor.to_dict() == {
        "position": 1,
        "currentLabel": "B",
        "totalCount": 3,
        "lastError": "x",
        "errors": ["x"],
    }
    assert BatchCursor.from_dict(cursor.to_dict()) == cursor


@pytest.mark.parametrize("data", [{}, {"position": 0}, {"position": "a", "totalCount": 1}, None])
def test_from_dict_rejects_invalid_data(data):
    with pytest.raises(ValueError):
        BatchCursor.from_dict(data)
