# Grist Explorer MCP Server
# File: query.py
# Version: v1

"""Query Builder: turn FilterCriteria / sort / page into work for one of two modes.

Local-filter mode evaluates predicates over an already fetched row set.
Server-query mode renders the same predicates as a SQLite expression for
the Grist SQL endpoint.

The filterable fields are fixed constants below. Any identifier that ends
up in generated SQL is double-quoted and checked by ``quote_identifier``;
ORDER BY columns are also checked against the caller's allow-list.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .models import FilterCriteria, PageWindow, RowRecord, SortKey

TIMESTAMP_FIELD = "MOD_DTE"
GENDER_FIELD = "性別"
TITLE_FIELD = "職稱"

GENDER_LABELS: Dict[str, str] = {"male": "男", "female": "女"}

ROW_ID = "id"


# ---------------------------------------------------------------------------
# Time helpers (shared by both modes)
# ---------------------------------------------------------------------------


def weekday_index(moment: datetime) -> int:
    """Day of week with Sunday=0 .. Saturday=6."""
    return (moment.weekday() + 1) % 7


def start_of_day(day: date, tz: Optional[tzinfo] = None) -> datetime:
    """Midnight of ``day``; naive (host local time) when ``tz`` is None."""
    return datetime.combine(day, time.min, tzinfo=tz)


def timestamp_to_datetime(value: Any, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Seconds since epoch -> datetime, or None when the value is unusable."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        return datetime.fromtimestamp(value, tz)
    except (OverflowError, OSError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Local-filter mode
# ---------------------------------------------------------------------------


def _passes_date_filters(record: RowRecord, criteria: FilterCriteria, tz: Optional[tzinfo]) -> bool:
    moment = timestamp_to_datetime(record.get(TIMESTAMP_FIELD), tz)
    if moment is None:
        return False

    if criteria.start and moment < start_of_day(criteria.start, tz):
        return False

    if criteria.end and moment >= start_of_day(criteria.end + timedelta(days=1), tz):
        return False

    if not criteria.all_days and criteria.days:
        if weekday_index(moment) not in criteria.days:
            return False

    return True


def matches_filters(
    record: RowRecord,
    criteria: FilterCriteria,
    tz: Optional[tzinfo] = None,
) -> bool:
    """AND of every active predicate for a single row."""
    if criteria.date_filter_active and not _passes_date_filters(record, criteria, tz):
        return False

    if criteria.gender != "all":
        if record.get(GENDER_FIELD) != GENDER_LABELS[criteria.gender]:
            return False

    needle = criteria.title_needle
    if needle:
        title = record.get(TITLE_FIELD)
        if not title or needle.lower() not in str(title).lower():
            return False

    return True


def apply_local_filters(
    records: Iterable[RowRecord],
    criteria: Optional[FilterCriteria],
    tz: Optional[tzinfo] = None,
) -> List[RowRecord]:
    """Keep the rows that no active predicate excludes, in input order."""
    rows = list(records)
    if criteria is None:
        return rows
    return [r for r in rows if matches_filters(r, criteria, tz)]


def sort_records(
    records: Iterable[RowRecord],
    sort: Sequence[SortKey],
    sort_keys: Optional[Mapping[str, Callable[[Any], Any]]] = None,
    default_key: Optional[Callable[[Any], Any]] = None,
) -> List[RowRecord]:
    """Sort rows locally; an empty sort keeps row-id order.

    ``sort_keys`` maps a column id to its key function. Missing values go
    last in both directions.
    """
    rows = sorted(records, key=lambda r: r.id)
    key_functions = sort_keys or {}

    for sort_key in reversed(list(sort)):
        column_id = sort_key.column_id
        key_fn = key_functions.get(column_id, default_key) or (lambda v: v)

        present = [r for r in rows if r.get(column_id) is not None]
        missing = [r for r in rows if r.get(column_id) is None]
        present.sort(key=lambda r: key_fn(r.get(column_id)), reverse=sort_key.descending)
        rows = present + missing

    return rows


def paginate(records: Sequence[RowRecord], window: PageWindow) -> List[RowRecord]:
    return list(records[window.offset : window.offset + window.page_size])


# ---------------------------------------------------------------------------
# Server-query mode
# ---------------------------------------------------------------------------


def sql_literal(value: Any) -> str:
    """Render a value as a SQL literal.

    Strings are single-quoted with embedded quotes doubled, numbers are
    passed through, everything else (bool, None, NaN, containers) is NULL.
    """
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, bool):
        return "NULL"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return repr(value)
    return "NULL"


def quote_identifier(name: str, allowed: Optional[Iterable[str]] = None) -> str:
    """Double-quote a column or table identifier after validating it."""
    if not isinstance(name, str) or not name.isidentifier():
        raise ValueError(f"Invalid identifier {name!r}.")
    if allowed is not None and name not in set(allowed):
        raise ValueError(f"Column {name!r} is not one of the table's columns.")
    return f'"{name}"'


def _utc_offset_seconds(day: date, tz: Optional[tzinfo]) -> int:
    moment = start_of_day(day, tz)
    if moment.tzinfo is None:
        moment = moment.astimezone()
    offset = moment.utcoffset() or timedelta(0)
    return int(offset.total_seconds())


def build_where_clause(criteria: Optional[FilterCriteria], tz: Optional[tzinfo] = None) -> str:
    """Conjunctive SQL expression for ``criteria``; empty string when nothing applies."""
    if criteria is None:
        return ""

    predicates: List[str] = []
    ts = quote_identifier(TIMESTAMP_FIELD)

    if criteria.date_filter_active:
        predicates.append(f"typeof({ts}) IN ('integer', 'real')")

        if criteria.start:
            lower = int(start_of_day(criteria.start, tz).timestamp())
            predicates.append(f"{ts} >= {sql_literal(lower)}")

        if criteria.end:
            upper = int(start_of_day(criteria.end + timedelta(days=1), tz).timestamp())
            predicates.append(f"{ts} < {sql_literal(upper)}")

        if not criteria.all_days and criteria.days:
            reference = criteria.start or criteria.end or date.today()
            shift = sql_literal(f"{_utc_offset_seconds(reference, tz):+d} seconds")
            days = ", ".join(sql_literal(d) for d in sorted(criteria.days))
            predicates.append(
                f"CAST(strftime('%w', {ts}, 'unixepoch', {shift}) AS INTEGER) IN ({days})"
            )

    if criteria.gender != "all":
        label = GENDER_LABELS[criteria.gender]
        predicates.append(f"{quote_identifier(GENDER_FIELD)} = {sql_literal(label)}")

    needle = criteria.title_needle
    if needle:
        column = quote_identifier(TITLE_FIELD)
        predicates.append(f"instr(lower({column}), lower({sql_literal(needle)})) > 0")

    return " AND ".join(predicates)


def build_order_by_clause(
    sort: Sequence[SortKey],
    allowed_columns: Optional[Iterable[str]] = None,
) -> str:
    """ORDER BY body for ``sort``; an empty sort orders by row id."""
    if not sort:
        return f"{quote_identifier(ROW_ID)} ASC"

    allowed = None
    if allowed_columns is not None:
        allowed = set(allowed_columns) | {ROW_ID}

    parts = [
        f"{quote_identifier(k.column_id, allowed)} {'DESC' if k.descending else 'ASC'}"
        for k in sort
    ]
    if all(k.column_id != ROW_ID for k in sort):
        # Deterministic order between equal sort values.
        parts.append(f"{quote_identifier(ROW_ID)} ASC")
    return ", ".join(parts)


def build_count_query(table_id: str, where_clause: str) -> str:
    sql = f"SELECT COUNT({quote_identifier(ROW_ID)}) AS total FROM {quote_identifier(table_id)}"
    if where_clause:
        sql += f" WHERE {where_clause}"
    return sql


def build_page_query(
    table_id: str,
    where_clause: str,
    order_by_clause: str,
    window: PageWindow,
) -> str:
    sql = f"SELECT * FROM {quote_identifier(table_id)}"
    if where_clause:
        sql += f" WHERE {where_clause}"
    sql += f" ORDER BY {order_by_clause or quote_identifier(ROW_ID) + ' ASC'}"
    sql += f" LIMIT {int(window.page_size)} OFFSET {int(window.offset)}"
    return sql
