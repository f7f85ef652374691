from __future__ import annotations

import random

import pytest

from tablesync.models.record import Record
from tablesync.services.grouper import MalformedSourceError, group_records


def _rec(name: str, step: str, row: int | None = None) -> Record:
    return Record({"lastName": name, "actionSteps": step} if name else {"actionSteps": step}, sheet_row=row)


def test_parents_open_groups_children_attach():
    records = [_rec("A", "1"), _rec("", "2"), _rec("", "3"), _rec("B", "4"), _rec("C", "5"), _rec("", "6")]
    groups = group_records(records, "lastName")
    assert [[r["actionSteps"] for r in g] for g in groups] == [["1", "2", "3"], ["4"], ["5", "6"]]
    assert all(g[0]["lastName"] for g in groups)
    assert all(not r.get("lastName") for g in groups for r in g[1:])


@pytest.mark.parametrize("seed", range(5))
def test_groups_partition_input_in_order(seed):
    rnd = random.Random(seed)
    records = [_rec("P", "0")] + [_rec("P" if rnd.random() < 0.3 else "", str(i)) for i in range(1, 40)]
    groups = group_records(records, "lastName")
    assert sum(len(g) for g in groups) == len(records)
    assert [r for g in groups for r in g] == records


def test_first_record_without_designator_is_malformed():
    records = [_rec("", "orphan", row=5), _rec("A", "1")]
    with pytest.raises(MalformedSourceError) as e:
        group_records(records, "lastName")
    assert e.value.position == 0
    assert e.value.record is records[0]
    assert "sheet row 5" in str(e.value)


def test_empty_input():
    assert group_records([], "lastName") == []
