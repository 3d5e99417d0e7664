# Grist Explorer MCP Server
# File: columns.py
# Version: v1

"""Column Definition Deriver and per-cell validation / formatting.

``derive_columns`` maps a table schema to ColumnDefinitions carrying a
type-aware sort key and a renderer. Rendering never raises: a cell whose
value does not fit its column type comes back as ``CellView(is_valid=False)``
holding the raw value as text.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import FormatError
from .models import ColumnSchemaEntry, FieldKind, FieldValue, RowRecord
from .query import ROW_ID, timestamp_to_datetime

logger = logging.getLogger(__name__)

SORT_DATETIME = "datetime"
SORT_ALPHANUMERIC = "alphanumeric"

NUMERIC_TYPES = frozenset({"Int", "Numeric"})
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_DIGITS = re.compile(r"([0-9]+)")


def is_date_type(column_type: str) -> bool:
    """True for ``Date`` and ``DateTime[:<zone>]`` column types."""
    return column_type.startswith("Date")


# ---------------------------------------------------------------------------
# Formatting & validation
# ---------------------------------------------------------------------------


def format_timestamp(value: Any, tz: Optional[tzinfo] = None) -> str:
    """Format seconds since epoch as ``YYYY-MM-DD HH:mm:ss``.

    Raises FormatError when the value is not a number or does not map to a
    calendar date.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormatError(f"Timestamp must be a number of seconds, got {value!r}.", value=value)

    moment = timestamp_to_datetime(value, tz)
    if moment is None:
        raise FormatError(f"Timestamp {value!r} is not a valid date.", value=value)
    return moment.strftime(TIMESTAMP_FORMAT)


def is_type_valid(value: Any, column_type: str) -> bool:
    """Check a raw cell value against its Grist column type; null is always valid."""
    field = FieldValue.of(value)
    if field.is_null:
        return True

    if column_type == "Int":
        return field.is_integer
    if column_type == "Numeric":
        return field.is_number
    if column_type in ("Text", "Any"):
        return field.kind is not FieldKind.STRUCTURED
    if is_date_type(column_type):
        return field.is_number
    if column_type.startswith("Ref:"):
        # References hold the target row id.
        return field.kind is FieldKind.NUMBER
    return True


def _display_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "NaN"
        return "Infinity" if value > 0 else "-Infinity"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


@dataclass(frozen=True)
class CellView:
    content: str
    is_valid: bool = True


def validate_and_format_cell(
    value: Any,
    column_type: str,
    tz: Optional[tzinfo] = None,
) -> CellView:
    if value is None:
        return CellView("", True)

    if not is_type_valid(value, column_type):
        return CellView(_display_scalar(value), False)

    if is_date_type(column_type):
        try:
            return CellView(format_timestamp(value, tz), True)
        except FormatError as exc:
            logger.debug("Cell rendered as invalid: %s", exc)
            return CellView(_display_scalar(value), False)

    return CellView(_display_scalar(value), True)


# ---------------------------------------------------------------------------
# Sort keys
# ---------------------------------------------------------------------------


def _as_finite_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def natural_sort_key(value: Any) -> tuple:
    """Numbers and numeric strings by value, other text in natural order."""
    number = _as_finite_float(value)
    if number is not None:
        return (0, number, ())

    parts = tuple(
        (0, int(chunk), "") if _DIGITS.fullmatch(chunk) else (1, 0, chunk.lower())
        for chunk in _DIGITS.split(_display_scalar(value))
        if chunk
    )
    return (1, 0.0, parts)


def datetime_sort_key(value: Any) -> tuple:
    """Chronological order for epoch-second values; non-numbers after them."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not (isinstance(value, float) and math.isnan(value)):
            return (0, float(value), "")
    return (1, 0.0, _display_scalar(value))


def generic_sort_key(value: Any) -> tuple:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
        if not math.isnan(number):
            return (0, number, "")
    return (1, 0.0, _display_scalar(value).lower())


_SORT_KEYS: Dict[Optional[str], Callable[[Any], tuple]] = {
    SORT_DATETIME: datetime_sort_key,
    SORT_ALPHANUMERIC: natural_sort_key,
    None: generic_sort_key,
}


# ---------------------------------------------------------------------------
# Column definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ColumnDefinition:
    """Renderable column descriptor derived from one schema entry."""

    id: str
    header: str
    accessor: str
    column_type: str = "Any"
    sortable: bool = True
    sort_kind: Optional[str] = None

    @property
    def sort_key(self) -> Callable[[Any], tuple]:
        return _SORT_KEYS[self.sort_kind]

    def value(self, record: RowRecord) -> Any:
        return record.get(self.id)

    def render(self, record: RowRecord, tz: Optional[tzinfo] = None) -> CellView:
        if self.id == ROW_ID:
            return CellView(str(record.id), True)
        return validate_and_format_cell(self.value(record), self.column_type, tz)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "header": self.header,
            "accessor": self.accessor,
            "type": self.column_type,
            "sortable": self.sortable,
            "sort_kind": self.sort_kind,
        }


ID_COLUMN = ColumnDefinition(
    id=ROW_ID,
    header=ROW_ID,
    accessor=ROW_ID,
    column_type="Int",
    sortable=False,
)


def derive_columns(schema: Optional[Sequence[ColumnSchemaEntry]]) -> List[ColumnDefinition]:
    """Prepend the id column, then one definition per non-formula column."""
    if schema is None:
        return []

    columns = [ID_COLUMN]
    for entry in schema:
        if entry.is_formula or entry.id == ROW_ID:
            continue

        column_type = entry.type or "Any"
        if is_date_type(column_type):
            sort_kind: Optional[str] = SORT_DATETIME
        elif column_type in NUMERIC_TYPES:
            sort_kind = SORT_ALPHANUMERIC
        else:
            sort_kind = None

        columns.append(
            ColumnDefinition(
                id=entry.id,
                header=entry.label or entry.id,
                accessor=f"fields.{entry.id}",
                column_type=column_type,
                sort_kind=sort_kind,
            )
        )
    return columns


def render_rows(
    columns: Sequence[ColumnDefinition],
    records: Sequence[RowRecord],
    tz: Optional[tzinfo] = None,
) -> List[Dict[str, Any]]:
    """Render every cell; invalid cells are flagged, never raised."""
    rendered = []
    for record in records:
        cells = {}
        for column in columns:
            cell = column.render(record, tz)
            cells[column.id] = {"content": cell.content, "valid": cell.is_valid}
        rendered.append({"id": record.id, "cells": cells})
    return rendered
