# Grist Explorer MCP Server
# File: tests/test_columns.py
# Version: v1

from __future__ import annotations

from datetime import timedelta, timezone

import pytest

from grist_explorer_mcp.columns import (
    SORT_ALPHANUMERIC,
    SORT_DATETIME,
    derive_columns,
    format_timestamp,
    is_type_valid,
    natural_sort_key,
    render_rows,
    validate_and_format_cell,
)
from grist_explorer_mcp.errors import FormatError
from grist_explorer_mcp.models import ColumnSchemaEntry, RowRecord
from grist_explorer_mcp.tables import to_schema_entry
from grist_explorer_mcp.tools.tasks import _EMPLOYEE_COLUMNS

UTC = timezone.utc
TAIPEI = timezone(timedelta(hours=8))


def test_format_timestamp_in_zone() -> None:
    assert format_timestamp(1700000000, UTC) == "2023-11-14 22:13:20"
    assert format_timestamp(1700000000, TAIPEI) == "2023-11-15 06:13:20"
    assert format_timestamp(1700000000.9, UTC) == "2023-11-14 22:13:20"


@pytest.mark.parametrize("value", ["1700000000", None, True, {"x": 1}, float("nan"), 10**20])
def test_format_timestamp_rejects_bad_values(value) -> None:
    with pytest.raises(FormatError) as exc_info:
        format_timestamp(value, UTC)
    assert exc_info.value.value is value


@pytest.mark.parametrize(
    "value, column_type, expected",
    [
        (None, "Int", True),
        (3, "Int", True),
        (3.0, "Int", True),
        (3.5, "Int", False),
        ("3", "Int", False),
        (2.5, "Numeric", True),
        ("2.5", "Numeric", False),
        (float("nan"), "Numeric", False),
        ("hello", "Text", True),
        (12, "Text", True),
        (["L", 1], "Text", False),
        (1700000000, "DateTime:Asia/Taipei", True),
        ("2023-11-14", "Date", False),
        (4, "Ref:People", True),
        ("4", "Ref:People", False),
        (True, "Bool", True),
        ({"a": 1}, "Attachments", True),
    ],
)
def test_is_type_valid(value, column_type, expected) -> None:
    assert is_type_valid(value, column_type) is expected


def test_validate_and_format_cell() -> None:
    assert validate_and_format_cell(None, "Numeric", UTC).content == ""
    assert validate_and_format_cell(4.0, "Numeric", UTC).content == "4"
    assert validate_and_format_cell(True, "Bool", UTC).content == "true"

    cell = validate_and_format_cell("88", "Numeric", UTC)
    assert cell.is_valid is False
    assert cell.content == "88"

    cell = validate_and_format_cell(1700000000, "DateTime:UTC", TAIPEI)
    assert (cell.content, cell.is_valid) == ("2023-11-15 06:13:20", True)

    # A numeric date that overflows the calendar is flagged, not raised.
    cell = validate_and_format_cell(10**20, "Date", UTC)
    assert cell.is_valid is False
    assert cell.content == str(10**20)

    cell = validate_and_format_cell(["L", "a", "b"], "Any", UTC)
    assert cell.is_valid is False
    assert cell.content == '["L", "a", "b"]'


def test_natural_sort_key_orders_numbers_then_text() -> None:
    values = ["item10", 3, "item2", "12", "Item1", 2.5]
    assert sorted(values, key=natural_sort_key) == [2.5, 3, "12", "Item1", "item2", "item10"]


def test_derive_columns_from_schema() -> None:
    schema = [to_schema_entry(c) for c in _EMPLOYEE_COLUMNS]

    columns = derive_columns(schema)
    by_id = {c.id: c for c in columns}

    assert [c.id for c in columns] == ["id", "Name", "性別", "職稱", "MOD_DTE", "Score", "Level"]
    assert "Summary" not in by_id

    assert by_id["id"].sortable is False
    assert by_id["MOD_DTE"].header == "Modified"
    assert by_id["MOD_DTE"].sort_kind == SORT_DATETIME
    assert by_id["Score"].sort_kind == SORT_ALPHANUMERIC
    assert by_id["Level"].header == "Level"
    assert by_id["Name"].sort_kind is None
    assert by_id["Name"].accessor == "fields.Name"


def test_derive_columns_edge_cases() -> None:
    assert derive_columns(None) == []
    assert [c.id for c in derive_columns([])] == ["id"]

    schema = [
        ColumnSchemaEntry(id="id", label="Row", type="Int"),
        ColumnSchemaEntry(id="Total", label="Total", type="Numeric", is_formula=True),
    ]
    assert [c.id for c in derive_columns(schema)] == ["id"]


def test_render_rows_flags_invalid_cells() -> None:
    columns = derive_columns([to_schema_entry(c) for c in _EMPLOYEE_COLUMNS])
    records = [
        RowRecord(1, {"Name": "Alice", "MOD_DTE": 1700000000, "Score": 91.5, "Level": 3}),
        RowRecord(4, {"Name": "Dana", "MOD_DTE": "not a date", "Score": "88", "Level": 1.5}),
    ]

    rendered = render_rows(columns, records, TAIPEI)

    first = rendered[0]["cells"]
    assert rendered[0]["id"] == 1
    assert first["id"] == {"content": "1", "valid": True}
    assert first["MOD_DTE"] == {"content": "2023-11-15 06:13:20", "valid": True}
    assert first["Score"] == {"content": "91.5", "valid": True}
    assert first["性別"] == {"content": "", "valid": True}

    second = rendered[1]["cells"]
    assert second["MOD_DTE"] == {"content": "not a date", "valid": False}
    assert second["Score"] == {"content": "88", "valid": False}
    assert second["Level"] == {"content": "1.5", "valid": False}


@pytest.mark.parametrize(
    "value, column_type, expected",
    [
        (float("nan"), "Numeric", ("NaN", False)),
        (float("inf"), "Numeric", ("Infinity", True)),
        (float("-inf"), "Int", ("-Infinity", False)),
        (float("nan"), "Date", ("NaN", False)),
    ],
)
def test_non_finite_numbers_render_like_javascript(value, column_type, expected) -> None:
    cell = validate_and_format_cell(value, column_type, UTC)
    assert (cell.content, cell.is_valid) == expected
