# Grist Explorer MCP Server
# File: tests/test_query_local.py
# Version: v1

"""Local-filter mode: predicates, sorting and pagination over fetched rows."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import List

import pytest

from grist_explorer_mcp.models import FilterCriteria, PageWindow, RowRecord, SortKey
from grist_explorer_mcp.query import (
    apply_local_filters,
    paginate,
    sort_records,
    start_of_day,
    timestamp_to_datetime,
    weekday_index,
)
from grist_explorer_mcp.tools.tasks import _EMPLOYEE_RECORDS

UTC = timezone.utc


def _rows() -> List[RowRecord]:
    return [RowRecord.from_api(r) for r in _EMPLOYEE_RECORDS]


def _ids(rows: List[RowRecord]) -> List[int]:
    return [r.id for r in rows]


def test_weekday_index_starts_on_sunday() -> None:
    assert weekday_index(datetime(2024, 1, 7)) == 0  # Sunday
    assert weekday_index(datetime(2024, 1, 1)) == 1  # Monday
    assert weekday_index(datetime(2024, 1, 6)) == 6  # Saturday


@pytest.mark.parametrize("value", [None, "1704067200", True, float("nan"), float("inf"), 10**20])
def test_timestamp_to_datetime_rejects_unusable_values(value) -> None:
    assert timestamp_to_datetime(value, UTC) is None


def test_no_filters_keep_every_row_in_order() -> None:
    assert _ids(apply_local_filters(_rows(), FilterCriteria(), UTC)) == [1, 2, 3, 4, 5, 6]
    assert _ids(apply_local_filters(_rows(), None, UTC)) == [1, 2, 3, 4, 5, 6]


def test_gender_filter_uses_field_labels() -> None:
    rows = _rows()
    assert _ids(apply_local_filters(rows, FilterCriteria(gender="female"), UTC)) == [1, 4, 5]
    assert _ids(apply_local_filters(rows, FilterCriteria(gender="male"), UTC)) == [2, 3, 6]


def test_title_filter_is_case_insensitive_substring() -> None:
    rows = _rows()
    assert _ids(apply_local_filters(rows, FilterCriteria(title="  ENGINEER "), UTC)) == [1, 2, 5]
    assert _ids(apply_local_filters(rows, FilterCriteria(title="   "), UTC)) == [1, 2, 3, 4, 5, 6]


def test_date_range_end_day_is_inclusive() -> None:
    criteria = FilterCriteria(start=date(2024, 1, 2), end=date(2024, 1, 3))
    assert _ids(apply_local_filters(_rows(), criteria, UTC)) == [2, 3]


def test_end_bound_excludes_next_midnight_exactly() -> None:
    boundary = int(start_of_day(date(2024, 1, 2), UTC).timestamp())
    rows = [
        RowRecord(1, {"MOD_DTE": boundary - 1}),
        RowRecord(2, {"MOD_DTE": boundary}),
    ]
    criteria = FilterCriteria(end=date(2024, 1, 1))
    assert _ids(apply_local_filters(rows, criteria, UTC)) == [1]


def test_start_bound_is_inclusive_at_midnight() -> None:
    midnight = int(start_of_day(date(2024, 1, 1), UTC).timestamp())
    rows = [RowRecord(1, {"MOD_DTE": midnight - 1}), RowRecord(2, {"MOD_DTE": midnight})]
    assert _ids(apply_local_filters(rows, FilterCriteria(start=date(2024, 1, 1)), UTC)) == [2]


def test_any_date_filter_drops_rows_without_numeric_timestamp() -> None:
    criteria = FilterCriteria(all_days=False, days=frozenset(range(7)))
    assert _ids(apply_local_filters(_rows(), criteria, UTC)) == [1, 2, 3, 5]


def test_weekday_filter() -> None:
    criteria = FilterCriteria(all_days=False, days=frozenset({1}))
    assert _ids(apply_local_filters(_rows(), criteria, UTC)) == [1, 5]


def test_weekday_filter_without_selection_is_not_applied() -> None:
    # The date filter is still active, so non-numeric timestamps drop out.
    criteria = FilterCriteria(all_days=False, days=frozenset())
    assert _ids(apply_local_filters(_rows(), criteria, UTC)) == [1, 2, 3, 5]


def test_weekday_depends_on_timezone() -> None:
    minus_two = timezone(timedelta(hours=-2))
    criteria = FilterCriteria(all_days=False, days=frozenset({0}))
    # 01:00 UTC on a Monday is still Sunday evening two hours west.
    assert _ids(apply_local_filters(_rows(), criteria, minus_two)) == [1, 5]
    assert _ids(apply_local_filters(_rows(), criteria, UTC)) == []


def test_filters_combine_with_and() -> None:
    criteria = FilterCriteria(
        gender="female",
        start=date(2024, 1, 1),
        end=date(2024, 1, 31),
        title="engineer",
    )
    assert _ids(apply_local_filters(_rows(), criteria, UTC)) == [1, 5]


def test_filter_criteria_from_panel_payload() -> None:
    criteria = FilterCriteria.from_dict(
        {
            "gender": "male",
            "dateRange": {"start": "2024-01-01", "end": ""},
            "days": {"all": False, "mon": True, "wed": True, "fri": False},
            "title": "eng",
            "analysisType": "team",
        }
    )
    assert criteria.gender == "male"
    assert criteria.start == date(2024, 1, 1)
    assert criteria.end is None
    assert criteria.all_days is False
    assert criteria.days == frozenset({1, 3})
    assert criteria.analysis_type == "team"
    assert criteria.date_filter_active


def test_filter_criteria_day_list_and_validation() -> None:
    criteria = FilterCriteria.from_dict({"days": ["Sunday", "sat"]})
    assert criteria.days == frozenset({0, 6})
    assert criteria.all_days is False

    with pytest.raises(ValueError):
        FilterCriteria.from_dict({"gender": "other"})
    with pytest.raises(ValueError):
        FilterCriteria.from_dict({"dateRange": {"start": "01/02/2024"}})
    with pytest.raises(ValueError):
        FilterCriteria(days=frozenset({7}))
    with pytest.raises(ValueError):
        FilterCriteria.from_dict({"dateRange": "2024-01-01"})
    with pytest.raises(ValueError):
        FilterCriteria.from_dict(["male"])


def test_sort_defaults_to_row_id() -> None:
    rows = list(reversed(_rows()))
    assert _ids(sort_records(rows, ())) == [1, 2, 3, 4, 5, 6]


def test_sort_descending_keeps_missing_values_last() -> None:
    rows = _rows()
    assert _ids(sort_records(rows, (SortKey("Level", True),))) == [5, 3, 2, 1, 4, 6]
    assert _ids(sort_records(rows, (SortKey("職稱", False),))) == [4, 1, 3, 2, 5, 6]
    assert _ids(sort_records(rows, (SortKey("職稱", True),))) == [5, 2, 3, 1, 4, 6]


def test_multi_key_sort_with_custom_key_functions() -> None:
    rows = [
        RowRecord(1, {"Team": "b", "Score": 3}),
        RowRecord(2, {"Team": "a", "Score": 1}),
        RowRecord(3, {"Team": "b", "Score": 9}),
        RowRecord(4, {"Team": "a", "Score": 5}),
    ]
    order = (SortKey("Team"), SortKey("Score", True))
    assert _ids(sort_records(rows, order, {"Score": float})) == [4, 2, 3, 1]


def test_paginate() -> None:
    rows = _rows()
    assert _ids(paginate(rows, PageWindow(0, 4))) == [1, 2, 3, 4]
    assert _ids(paginate(rows, PageWindow(1, 4))) == [5, 6]
    assert paginate(rows, PageWindow(5, 4)) == []
    with pytest.raises(ValueError):
        PageWindow(-1, 4)
    with pytest.raises(ValueError):
        PageWindow(0, 0)


def test_monday_and_wednesday_selection_excludes_tuesday() -> None:
    criteria = FilterCriteria(all_days=False, days=frozenset({1, 3}))
    assert _ids(apply_local_filters(_rows(), criteria, UTC)) == [1, 3, 5]
