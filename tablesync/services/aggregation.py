from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import pandas as pd

from ..excel.headers import normalize_header
from ..models.record import Group, Record, is_empty_value
from ..models.source_item import SourceItem

"""Aggregation profiles: grouped source rows -> dashboard summary records.

Source progress sheets list one participant (teacher, leader or coach) per group: the
parent row carries the participant's name and goal, every following row one more action
step. A profile decides which header designates a new participant, which rows count, and
how groups are summarized into dashboard rows.
"""

__all__ = [
    "AggregationContext",
    "AggregationProfile",
    "SCHOOL_PROFILE",
    "COACH_PROFILE",
    "PROFILES",
    "get_profile",
    "count_by",
]

logger = logging.getLogger(__name__)

NOT_APPLICABLE = "N/A"
CHECK_MARK = "✔️"
NO_MARK = "-"
_PL_STRATEGY_PREFIX_RE = re.compile(r"^PL Strategy:\s*", re.IGNORECASE)
_INSERT_NOTE_RE = re.compile(r"insert note", re.IGNORECASE)


@dataclass(frozen=True)
class AggregationContext:
    item: SourceItem
    headers: list[str]
    cell_value: Callable[[str], Any]  # A1 -> value of the source sheet
    now: datetime = field(default_factory=datetime.now)

    def pl_strategy(self, a1: str) -> str:
        value = self.cell_value(a1)
        return _PL_STRATEGY_PREFIX_RE.sub("", "" if value is None else str(value))


@dataclass(frozen=True)
class AggregationProfile:
    name: str
    designator: Callable[[Sequence[str]], str]
    keep: Callable[[Record, str], bool]
    summarize: Callable[[list[Group], AggregationContext], list[Record]]


def count_by(rows: Sequence[Record], name: str) -> dict[str, int]:
    """Occurrences of each non-empty value of ``name`` plus a "total" entry."""
    present = [r.get(name) for r in rows if not is_empty_value(r.get(name))]
    values = pd.Series(present, dtype=object)
    counts = {"total": int(values.size)}
    for value, n in values.value_counts(sort=False).items():
        counts[str(value)] = int(n)
    return counts


def _ratio(part: int, total: int) -> float:
    return 0 if total == 0 else part / total


def _latest_date(rows: Sequence[Record], name: str) -> Any:
    dates = [r.get(name) for r in rows if isinstance(r.get(name), (datetime, date))]
    return max(dates) if dates else NOT_APPLICABLE


# ---------------------------------------------------------------------- school
def _school_designator(headers: Sequence[str]) -> str:
    # 早期参加校のシートには lastName 列がない
    return "lastName" if "lastName" in headers else "gradeBand"


_SCHOOL_PLACEHOLDERS = {"lastName": "(Last Name)", "gradeBand": "Choose Grade Band"}


def _school_keep(record: Record, designator: str) -> bool:
    if is_empty_value(record.get("actionSteps")):
        return False
    return record.get(designator) != _SCHOOL_PLACEHOLDERS.get(designator)


def _summarize_school(groups: list[Group], ctx: AggregationContext) -> list[Record]:
    rows = [r for g in groups for r in g]
    summary = Record({
        "districtName": ctx.item.fields.get("districtName", ""),
        "schoolName": ctx.item.fields.get("schoolName", ctx.item.label),
        "totalNumberOfTeachersleaders": len(groups),
        "totalNumberOfGoals": len(groups),  # 1人1目標
        "schoolsFocusStandard": groups[0][0].get("focusStandard") if groups else None,
        "schoolsPlStrategy": ctx.pl_strategy("D3"),
        "lastUpdated": ctx.now,
    })
    if not rows:
        return [summary]

    summary["goalStartDate"] = _latest_date(rows, "smartGoalStartDate")
    summary["goalEndDate"] = _latest_date(rows, "smartGoalCompletedDate")

    steps = count_by(rows, "statusOfActionSteps")
    for status, n in steps.items():
        summary[normalize_header(f"Action Steps {status}")] = n
    summary["totalNumberOfActionSteps"] = steps["total"]
    summary["percentOfActionStepsCompleted"] = _ratio(steps.get("Completed", 0), steps["total"])
    summary["totalNumberOfNotes"] = sum(1 for r in rows if not is_empty_value(r.get("notes")))

    progress = count_by(rows, "progressIndicator")
    for indicator, n in progress.items():
        summary[normalize_header(f"Progress Indicator: {indicator}")] = n
        summary[normalize_header(f"Percent of Progress Indicator: {indicator}")] = _ratio(n, progress["total"])

    parents = pd.Series([g[0].get("statusOfGoal") for g in groups], dtype=object)
    met = int((parents == "Met").sum())
    not_met = int((parents == "Not Met").sum())
    summary["goalsMet"] = met
    summary["goalsNotMet"] = not_met
    summary["percentOfGoalsMet"] = _ratio(met, len(groups))
    summary["percentOfGoalsNotMet"] = _ratio(not_met, len(groups))
    return [summary]


SCHOOL_PROFILE = AggregationProfile(
    name="school",
    designator=_school_designator,
    keep=_school_keep,
    summarize=_summarize_school,
)


# ---------------------------------------------------------------------- coach
_COACH_NOT_APPLICABLE_FIELDS = [
    "leadersGoalsMet",
    "practitionersGoalsMet",
    "leadersPercentOfGoalsMet",
    "leadersGoalsNotMet",
    "practitionersGoalsNotMet",
    "practitionersPercentOfGoalsMet",
    "leadersPercentOfGoalsNotMet",
    "practitionersPercentOfGoalsNotMet",
    "leadersPercentOfActionStepsCompleted",
    "practitionersPercentOfActionStepsCompleted",
    "leadersPercentOfProgressIndicatorModel",
    "practitionersPercentOfProgressIndicatorModel",
    "leadersPercentOfProgressIndicatorImpact",
    "practitionersPercentOfProgressIndicatorImpact",
    "leadersPercentOfProgressIndicatorInProgress",
    "practitionersPercentOfProgressIndicatorInProgress",
    "leadersPercentOfProgressIndicatorCoaching",
    "practitionersPercentOfProgressIndicatorCoaching",
]

_PROGRESS_MARKS = {
    "progressIndicatorModel": "Model",
    "progressIndicatorImpact": "Impact",
    "progressIndicatorInProgress": "In Progress",
    "progressIndicatorCoaching": "Coaching",
}


def _coach_keep(record: Record, designator: str) -> bool:
    return not is_empty_value(record.get("actionSteps")) and record.get(designator) != "(Last Name)"


def _count_notes(parent: Record) -> int:
    return sum(
        1
        for name, value in parent.items()
        if name.startswith("classroomOrConferenceNotes")
        and not is_empty_value(value)
        and not _INSERT_NOTE_RE.search(str(value))
    )


def _summarize_coaches(groups: list[Group], ctx: AggregationContext) -> list[Record]:
    if not groups:
        return []
    first = groups[0][0]
    pl_strategy = ctx.pl_strategy("F3")
    rows: list[Record] = []
    for group in groups:
        coach = group[0]
        row = Record({
            "districtName": coach.get("districtName", ""),
            "schoolName": coach.get("schoolName", ""),
            "coachName": f"{coach.get('firstName', '')} {coach.get('lastName', '')}".strip(),
            "coachschool": "Coach",
            "lastUpdated": ctx.now,
            "schoolsFocusStandard": first.get("focusStandard"),
            "schoolsPlStrategy": pl_strategy,
            "totalNumberOfNotes": _count_notes(coach),
            "goalStartDate": coach.get("smartGoalStartDate"),
            "goalEndDate": coach.get("smartGoalCompletedDate"),
            "coachesTotalNumberOfActionSteps": len(group),
            "coachesGoalsMet": coach.get("statusOfCoachesActionPlanGoal"),
            "statusOfCoachesActionPlanGoal": coach.get("statusOfCoachesActionPlanGoal"),
            "reasonForNotMetCoach": coach.get("reasonForNotMet"),
            "didCoachesImplementPlStrategy": first.get("didCoachesImplementPlStrategy"),
            "didSomeCoachesMeetTheirGoals": first.get("didSomeCoachesMeetTheirGoals"),
        })
        for name, progress in _PROGRESS_MARKS.items():
            row[name] = CHECK_MARK if coach.get("overallProgress") == progress else NO_MARK
        for name in _COACH_NOT_APPLICABLE_FIELDS:
            row[name] = NOT_APPLICABLE

        steps = count_by(group, "statusOfActionSteps")
        row["actionStepsCompleted"] = steps.get("Completed", 0)
        row["actionStepsInProgress"] = steps.get("In Progress", 0)
        row["actionStepsUpcoming"] = steps.get("Upcoming", 0)
        row["coachesPercentOfActionStepsCompleted"] = _ratio(steps.get("Completed", 0), len(group))
        rows.append(row)
    return rows


COACH_PROFILE = AggregationProfile(
    name="coach",
    designator=lambda headers: "lastName",
    keep=_coach_keep,
    summarize=_summarize_coaches,
)

PROFILES: dict[str, AggregationProfile] = {
    SCHOOL_PROFILE.name: SCHOOL_PROFILE,
    COACH_PROFILE.name: COACH_PROFILE,
}


def get_profile(name: str) -> AggregationProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"unknown aggregation profile: {name!r} (expected one of {sorted(PROFILES)})") from None
