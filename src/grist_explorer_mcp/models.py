# Grist Explorer MCP Server
# File: models.py
# Version: v1

"""Domain models used by the Grist Explorer MCP server."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


@dataclass
class Organization:
    """A Grist organization (team site) as returned by /api/orgs."""

    id: Any
    name: str
    domain: Optional[str] = None

    # Raw JSON payload from the API, for debugging / advanced use.
    raw: Optional[Dict[str, Any]] = None


@dataclass
class Document:
    """A Grist document flattened out of its workspace.

    ``display_name`` equals ``name`` unless another document in the same
    catalog shares the name, in which case the workspace is appended.
    """

    id: str
    name: str
    workspace_name: str
    display_name: str = ""

    raw: Optional[Dict[str, Any]] = None


@dataclass
class Table:
    """A table inside a Grist document."""

    id: str

    raw: Optional[Dict[str, Any]] = None


@dataclass
class ColumnSchemaEntry:
    """One column of a table schema (/columns endpoint)."""

    id: str
    label: str
    type: str
    is_formula: bool = False

    raw: Optional[Dict[str, Any]] = None


class FieldKind(str, Enum):
    NULL = "null"
    NUMBER = "number"
    TEXT = "text"
    BOOLEAN = "boolean"
    STRUCTURED = "structured"


@dataclass(frozen=True)
class FieldValue:
    """Tagged view over a dynamically typed JSON cell value."""

    kind: FieldKind
    value: Any = None

    @classmethod
    def of(cls, raw: Any) -> "FieldValue":
        if raw is None:
            return cls(FieldKind.NULL)
        # bool is an int subclass, so it has to be checked first.
        if isinstance(raw, bool):
            return cls(FieldKind.BOOLEAN, raw)
        if isinstance(raw, (int, float)):
            return cls(FieldKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(FieldKind.TEXT, raw)
        return cls(FieldKind.STRUCTURED, raw)

    @property
    def is_null(self) -> bool:
        return self.kind is FieldKind.NULL

    @property
    def is_number(self) -> bool:
        """True for numbers other than NaN."""
        return self.kind is FieldKind.NUMBER and not (
            isinstance(self.value, float) and math.isnan(self.value)
        )

    @property
    def is_integer(self) -> bool:
        if self.kind is not FieldKind.NUMBER:
            return False
        if isinstance(self.value, int):
            return True
        return math.isfinite(self.value) and float(self.value).is_integer()


@dataclass
class RowRecord:
    """One data row: a stable integer id plus the field-value mapping."""

    id: int
    fields: Dict[str, Any] = field(default_factory=dict)

    def get(self, column_id: str, default: Any = None) -> Any:
        if column_id == "id":
            return self.id
        return self.fields.get(column_id, default)

    def field_value(self, column_id: str) -> FieldValue:
        return FieldValue.of(self.get(column_id))

    @classmethod
    def from_api(cls, item: Mapping[str, Any]) -> "RowRecord":
        """Build a record from either {id, fields} or a flat SQL row."""
        fields = item.get("fields")
        if not isinstance(fields, dict):
            fields = {k: v for k, v in item.items() if k != "id"}
        else:
            fields = dict(fields)

        raw_id = item.get("id", fields.get("id"))
        fields.pop("id", None)
        return cls(id=int(raw_id) if raw_id is not None else 0, fields=fields)


# ---------------------------------------------------------------------------
# Filter / sort / pagination inputs
# ---------------------------------------------------------------------------

GENDER_ALL = "all"
GENDERS = ("male", "female", GENDER_ALL)

DAY_INDEX: Dict[str, int] = {
    "sun": 0,
    "mon": 1,
    "tue": 2,
    "wed": 3,
    "thu": 4,
    "fri": 5,
    "sat": 6,
}


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


@dataclass(frozen=True)
class FilterCriteria:
    """User-level filter input.

    Only gender, the date range, the weekday selection and the title take
    part in row filtering; ``analysis_type`` is carried for display.
    """

    gender: str = GENDER_ALL
    start: Optional[date] = None
    end: Optional[date] = None
    all_days: bool = True
    days: FrozenSet[int] = frozenset()
    title: str = ""
    analysis_type: str = "individual-raw"

    def __post_init__(self) -> None:
        if self.gender not in GENDERS:
            raise ValueError(f"Unknown gender filter {self.gender!r}; expected one of {GENDERS}.")
        bad = [d for d in self.days if d not in range(7)]
        if bad:
            raise ValueError(f"Weekday indexes must be 0 (Sunday) .. 6 (Saturday), got {bad}.")

    @property
    def date_filter_active(self) -> bool:
        return bool(self.start or self.end or not self.all_days)

    @property
    def title_needle(self) -> str:
        return (self.title or "").strip()

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]]) -> "FilterCriteria":
        """Parse the filter-panel payload.

        Accepts the panel's shape::

            {"gender": "male", "dateRange": {"start": "2024-01-01", "end": ""},
             "days": {"all": False, "mon": True, "wed": True}, "title": "eng"}

        as well as flat ``start`` / ``end`` keys.
        """
        if not payload:
            return cls()
        if not isinstance(payload, Mapping):
            raise ValueError(f"Filters must be an object, got {type(payload).__name__}.")

        date_range = payload.get("dateRange") or payload.get("date_range") or {}
        if not isinstance(date_range, Mapping):
            raise ValueError("dateRange must be an object with start / end dates.")
        start = _parse_date(date_range.get("start", payload.get("start")))
        end = _parse_date(date_range.get("end", payload.get("end")))

        raw_days = payload.get("days")
        all_days = True
        selected: set[int] = set()
        if isinstance(raw_days, Mapping):
            all_days = bool(raw_days.get("all", False))
            selected = {DAY_INDEX[k] for k, on in raw_days.items() if k in DAY_INDEX and on}
        elif isinstance(raw_days, Iterable) and not isinstance(raw_days, str):
            selected = {DAY_INDEX[str(d).lower()[:3]] for d in raw_days}
            all_days = selected == set(range(7))

        return cls(
            gender=str(payload.get("gender") or GENDER_ALL),
            start=start,
            end=end,
            all_days=all_days,
            days=frozenset(selected),
            title=str(payload.get("title") or ""),
            analysis_type=str(
                payload.get("analysisType") or payload.get("analysis_type") or "individual-raw"
            ),
        )


@dataclass(frozen=True)
class SortKey:
    column_id: str
    descending: bool = False


SortSpec = Tuple[SortKey, ...]


def parse_sort(items: Optional[Iterable[Any]]) -> SortSpec:
    """Accept SortKey objects, {"id", "desc"} dicts or "-column" strings."""
    keys = []
    for item in items or ():
        if isinstance(item, SortKey):
            keys.append(item)
        elif isinstance(item, Mapping):
            column_id = item.get("id") or item.get("column_id") or item.get("columnId")
            descending = item.get("desc", item.get("descending", False))
            keys.append(SortKey(str(column_id), bool(descending)))
        else:
            text = str(item).strip()
            if text.startswith("-"):
                keys.append(SortKey(text[1:], True))
            else:
                keys.append(SortKey(text, False))
    return tuple(keys)


@dataclass(frozen=True)
class PageWindow:
    page_index: int = 0
    page_size: int = 10

    def __post_init__(self) -> None:
        if self.page_index < 0:
            raise ValueError("page_index must be >= 0")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")

    @property
    def offset(self) -> int:
        return self.page_index * self.page_size
