# Grist Explorer MCP Server
# File: tables.py
# Version: v1

"""Table/Schema Resolver: a document's tables and a table's columns."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .client import GristClient
from .models import ColumnSchemaEntry, Table


def to_schema_entry(item: Dict[str, Any]) -> ColumnSchemaEntry:
    fields = item.get("fields") if isinstance(item.get("fields"), dict) else {}
    column_id = str(item.get("id") or "")
    return ColumnSchemaEntry(
        id=column_id,
        label=str(fields.get("label") or ""),
        type=str(fields.get("type") or "Any"),
        is_formula=bool(fields.get("isFormula", False)),
        raw=item,
    )


async def resolve_tables(client: GristClient, token: Optional[str], doc_id: str) -> List[Table]:
    raw_tables = await client.list_tables(token, doc_id)
    return [Table(id=str(t["id"]), raw=t) for t in raw_tables if t.get("id")]


async def resolve_schema(
    client: GristClient,
    token: Optional[str],
    doc_id: str,
    table_id: str,
) -> List[ColumnSchemaEntry]:
    raw_columns = await client.list_columns(token, doc_id, table_id)
    return [to_schema_entry(c) for c in raw_columns if c.get("id")]
