# Grist Explorer MCP Server
# File: tools/tasks.py
# Version: v1
#
# NOTE: This module is the single place where we define the "business
# logic" exposed as MCP tools. The transports (stdio / http) only call
# `register_tools(server)` to wire these up.

from __future__ import annotations

import copy
import logging
import sqlite3
import time
from dataclasses import astuple
from typing import Any, Dict, List, Optional

from ..auth import ProfileKeyFetcher
from ..client import GristClient
from ..config import GristConfig
from ..credentials import (
    CredentialHolder,
    FileCredentialStore,
    MemoryCredentialStore,
    looks_like_api_key,
)
from ..errors import AuthorizationFailure, GristError, RequestError, ResolutionError
from ..models import FilterCriteria, PageWindow, parse_sort
from ..orchestrator import DataOrchestrator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers (errors, mock client, session)
# ---------------------------------------------------------------------------


def _make_error(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Small, LLM-friendly error shape used by tools and diagnostics."""
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return err


MOCK_API_KEY = "mock" * 10

_MOCK_ORGS: List[Dict[str, Any]] = [
    {"id": 1, "name": "Personal", "domain": "docs-1"},
    {"id": 2, "name": "FCU AI", "domain": "fcuai.tw"},
]

_MOCK_WORKSPACES: Dict[int, List[Dict[str, Any]]] = {
    1: [{"name": "Home", "docs": [{"id": "docScratch", "name": "Scratch"}]}],
    2: [
        {
            "name": "Training",
            "docs": [
                {"id": "docTraining", "name": "Reports"},
                {"id": "docRoster", "name": "Roster"},
            ],
        },
        {"name": "Archive", "docs": [{"id": "docArchive", "name": "Reports"}]},
    ],
}

_EMPLOYEE_COLUMNS: List[Dict[str, Any]] = [
    {"id": "Name", "fields": {"label": "Name", "type": "Text", "isFormula": False}},
    {"id": "性別", "fields": {"label": "性別", "type": "Text", "isFormula": False}},
    {"id": "職稱", "fields": {"label": "職稱", "type": "Text", "isFormula": False}},
    {"id": "MOD_DTE", "fields": {"label": "Modified", "type": "DateTime:Asia/Taipei", "isFormula": False}},
    {"id": "Score", "fields": {"label": "Score", "type": "Numeric", "isFormula": False}},
    {"id": "Level", "fields": {"label": "", "type": "Int", "isFormula": False}},
    {"id": "Summary", "fields": {"label": "Summary", "type": "Any", "isFormula": True}},
]

# 2024-01-01 is a Monday.
_MON = 1704067200
_DAY = 86400

_EMPLOYEE_RECORDS: List[Dict[str, Any]] = [
    {"id": 1, "fields": {"Name": "Alice", "性別": "女", "職稱": "Engineer", "MOD_DTE": _MON + 3600, "Score": 91.5, "Level": 3}},
    {"id": 2, "fields": {"Name": "Bob", "性別": "男", "職稱": "Senior Engineer", "MOD_DTE": _MON + _DAY + 3600, "Score": "88", "Level": 4}},
    {"id": 3, "fields": {"Name": "Chen", "性別": "男", "職稱": "Manager", "MOD_DTE": _MON + 2 * _DAY + 3600, "Score": 75, "Level": 5}},
    {"id": 4, "fields": {"Name": "Dana", "性別": "女", "職稱": "Analyst", "MOD_DTE": "not a date", "Score": 60, "Level": 2}},
    {"id": 5, "fields": {"Name": "Eve", "性別": "女", "職稱": "engineering lead", "MOD_DTE": _MON + 7 * _DAY + 3600, "Score": 99, "Level": 6}},
    {"id": 6, "fields": {"Name": "Fang", "性別": "男", "職稱": None, "MOD_DTE": None, "Score": None, "Level": 1.5}},
]

_MOCK_TABLES: Dict[str, Dict[str, Dict[str, Any]]] = {
    "docScratch": {},
    "docTraining": {
        "Employees": {"columns": _EMPLOYEE_COLUMNS, "records": _EMPLOYEE_RECORDS},
        "Sessions": {
            "columns": [
                {"id": "Topic", "fields": {"label": "Topic", "type": "Text", "isFormula": False}},
                {"id": "Trainer", "fields": {"label": "Trainer", "type": "Ref:Employees", "isFormula": False}},
            ],
            "records": [
                {"id": 1, "fields": {"Topic": "Safety", "Trainer": 3}},
                {"id": 2, "fields": {"Topic": "Onboarding", "Trainer": 1}},
            ],
        },
    },
    "docRoster": {
        "Members": {
            "columns": [{"id": "Member", "fields": {"label": "Member", "type": "Text", "isFormula": False}}],
            "records": [{"id": 1, "fields": {"Member": "Alice"}}],
        },
    },
    "docArchive": {
        "Employees": {"columns": _EMPLOYEE_COLUMNS, "records": _EMPLOYEE_RECORDS[:2]},
    },
}


class MockGristClient:
    """Small in-memory stand-in for GristClient.

    Activated when GRIST_MOCK_MODE is truthy. Any key works except one that
    contains "expired", which answers like a revoked key (HTTP 401). SQL
    runs against an in-memory SQLite copy of the table, like Grist itself.
    """

    def __init__(self, config: Optional[GristConfig] = None) -> None:
        self._config = config
        self.calls: List[str] = []

    def _check(self, token: Optional[str], call: str) -> None:
        self.calls.append(call)
        if not token:
            raise ResolutionError("API key is not set.")
        if "expired" in token:
            raise AuthorizationFailure("Invalid API key", status=401, url=f"mock://{call}")

    def _table(self, doc_id: str, table_id: str) -> Dict[str, Any]:
        table = _MOCK_TABLES.get(doc_id, {}).get(table_id)
        if table is None:
            raise RequestError(f"Table not found \"{table_id}\"", status=404, url=f"mock://{doc_id}/{table_id}")
        return table

    async def ping(self) -> bool:
        return True

    async def get_orgs(self, token: Optional[str]) -> Any:
        self._check(token, "orgs")
        return copy.deepcopy(_MOCK_ORGS)

    async def list_workspaces(self, token: Optional[str], org_id: Any) -> List[Dict[str, Any]]:
        self._check(token, f"workspaces:{org_id}")
        return copy.deepcopy(_MOCK_WORKSPACES.get(org_id, []))

    async def list_tables(self, token: Optional[str], doc_id: str) -> List[Dict[str, Any]]:
        self._check(token, f"tables:{doc_id}")
        if doc_id not in _MOCK_TABLES:
            raise RequestError("document not found", status=404, url=f"mock://{doc_id}")
        return [{"id": table_id, "fields": {}} for table_id in _MOCK_TABLES[doc_id]]

    async def list_columns(self, token: Optional[str], doc_id: str, table_id: str) -> List[Dict[str, Any]]:
        self._check(token, f"columns:{doc_id}/{table_id}")
        return copy.deepcopy(self._table(doc_id, table_id)["columns"])

    async def fetch_records(
        self,
        token: Optional[str],
        doc_id: str,
        table_id: str,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        self._check(token, f"records:{doc_id}/{table_id}")
        records = self._table(doc_id, table_id)["records"]
        return copy.deepcopy(records[:limit] if limit else records)

    async def run_sql(self, token: Optional[str], doc_id: str, sql: str) -> List[Dict[str, Any]]:
        self._check(token, f"sql:{doc_id}")
        conn = sqlite3.connect(":memory:")
        conn.row_factory = sqlite3.Row
        try:
            for table_id, table in _MOCK_TABLES.get(doc_id, {}).items():
                col_ids = [c["id"] for c in table["columns"]]
                col_sql = ", ".join(f'"{c}"' for c in col_ids)
                conn.execute(f'CREATE TABLE "{table_id}" (id INTEGER PRIMARY KEY, {col_sql})')
                placeholders = ", ".join("?" for _ in range(len(col_ids) + 1))
                conn.executemany(
                    f'INSERT INTO "{table_id}" VALUES ({placeholders})',
                    [[r["id"]] + [r["fields"].get(c) for c in col_ids] for r in table["records"]],
                )
            try:
                rows = conn.execute(sql).fetchall()
            except sqlite3.Error as exc:
                raise RequestError(f"SQLITE_ERROR: {exc}", status=400, url=f"mock://{doc_id}/sql") from exc
        finally:
            conn.close()
        return [{"fields": dict(row)} for row in rows]


def _make_client(cfg: Optional[GristConfig] = None) -> GristClient:
    """Create a GristClient from environment variables.

    If GRIST_MOCK_MODE is truthy, a lightweight in-process mock client is
    returned instead of a real HTTP client.

    Note: Callers should prefer invoking this with *no arguments* to keep
    unit tests monkeypatch-friendly (tests often replace _make_client with
    a no-arg lambda).
    """
    cfg = cfg or GristConfig.from_env()

    if cfg.mock_mode:
        return MockGristClient(config=cfg)  # type: ignore[return-value]

    return GristClient(config=cfg)


def _make_credentials(cfg: GristConfig) -> CredentialHolder:
    path = cfg.credential_path
    store = FileCredentialStore(path) if path else MemoryCredentialStore()
    holder = CredentialHolder(store)
    if not holder.get() and cfg.initial_api_key:
        holder.set(cfg.initial_api_key)
    return holder


def _on_auth_error() -> None:
    logger.warning(
        "Grist rejected the API key; call grist_fetch_api_key or grist_set_api_key to log in again."
    )


_SESSION: DataOrchestrator | None = None
_SESSION_CREDENTIALS: CredentialHolder | None = None
_SESSION_SIGNATURE: tuple | None = None


def _get_session() -> DataOrchestrator:
    """Lazily create (or re-create) the process-wide session from config."""
    global _SESSION, _SESSION_CREDENTIALS, _SESSION_SIGNATURE

    cfg = GristConfig.from_env()
    signature = astuple(cfg) + (id(_make_client),)
    if _SESSION is None or _SESSION_SIGNATURE != signature:
        _SESSION_CREDENTIALS = _make_credentials(cfg)
        _SESSION = DataOrchestrator.from_config(
            cfg,
            client=_make_client(),
            credentials=_SESSION_CREDENTIALS,
            on_auth_error=_on_auth_error,
        )
        _SESSION_SIGNATURE = signature
    return _SESSION


def _get_credentials() -> CredentialHolder:
    _get_session()
    assert _SESSION_CREDENTIALS is not None
    return _SESSION_CREDENTIALS


def reset_session() -> None:
    """Drop the session so the next call rebuilds it from the environment."""
    global _SESSION, _SESSION_CREDENTIALS, _SESSION_SIGNATURE
    _SESSION = None
    _SESSION_CREDENTIALS = None
    _SESSION_SIGNATURE = None


# ---------------------------------------------------------------------------
# Core async tasks (library-style)
# ---------------------------------------------------------------------------


async def ping() -> Dict[str, Any]:
    client = _make_client()
    ok = await client.ping()
    return {"ok": bool(ok)}


async def set_api_key(api_key: str) -> Dict[str, Any]:
    if not looks_like_api_key(api_key):
        return {
            "ok": False,
            "error": _make_error("INVALID_API_KEY", "That does not look like a Grist API key."),
        }
    session = _get_session()
    view = await session.set_credential(api_key.strip())
    return {"ok": True, "view": view.to_dict()}


async def fetch_api_key() -> Dict[str, Any]:
    """Fetch the key from the profile endpoint using the session cookie."""
    cfg = GristConfig.from_env()
    session = _get_session()

    if cfg.mock_mode:
        key: Optional[str] = MOCK_API_KEY
    else:
        key = await ProfileKeyFetcher(config=cfg, holder=_get_credentials()).fetch_key()

    if not key:
        return {
            "ok": False,
            "error": _make_error(
                "LOGIN_REQUIRED",
                "Automatic API key retrieval failed; make sure GRIST_SESSION_COOKIE "
                "belongs to a logged-in Grist session.",
            ),
            "view": session.view().to_dict(),
        }

    view = await session.set_credential(key)
    return {"ok": True, "view": view.to_dict()}


async def logout() -> Dict[str, Any]:
    view = await _get_session().clear_credential()
    return view.to_dict()


async def list_documents() -> Dict[str, Any]:
    view = await _get_session().load_documents()
    return view.to_dict()


async def select_document(doc_id: str) -> Dict[str, Any]:
    view = await _get_session().select_document(doc_id)
    return view.to_dict()


async def select_table(table_id: str) -> Dict[str, Any]:
    view = await _get_session().select_table(table_id)
    return view.to_dict()


async def apply_filters(filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    try:
        criteria = FilterCriteria.from_dict(filters)
    except (ValueError, KeyError) as exc:
        return {"ok": False, "error": _make_error("INVALID_FILTERS", str(exc))}
    view = await _get_session().apply_filters(criteria)
    return view.to_dict()


async def set_sort(sort: Optional[List[Any]] = None) -> Dict[str, Any]:
    try:
        view = await _get_session().set_sort(parse_sort(sort))
    except ValueError as exc:
        return {"ok": False, "error": _make_error("INVALID_SORT", str(exc))}
    return view.to_dict()


async def set_page(page_index: int = 0, page_size: Optional[int] = None) -> Dict[str, Any]:
    session = _get_session()
    current = session.view().pagination
    try:
        window = PageWindow(int(page_index), int(page_size or current.page_size))
    except ValueError as exc:
        return {"ok": False, "error": _make_error("INVALID_PAGE", str(exc))}
    view = await session.set_page(window)
    return view.to_dict()


async def get_view() -> Dict[str, Any]:
    return _get_session().view().to_dict()


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def _collect_config_info(cfg: GristConfig) -> Dict[str, Any]:
    """Redacted configuration snapshot (never includes the key or cookie)."""
    return {
        "base_url": cfg.base_url,
        "target_org_domain": cfg.target_org_domain,
        "mock_mode": bool(cfg.mock_mode),
        "verify_tls": bool(cfg.verify_tls),
        "query_mode": cfg.query_mode,
        "record_limit": cfg.record_limit,
        "page_size": cfg.page_size,
        "timezone": cfg.timezone_name,
        "credential_persistence": cfg.credential_path is not None,
        "session_cookie_configured": bool(cfg.session_cookie),
    }


async def diagnostics() -> Dict[str, Any]:
    started = time.time()
    cfg = GristConfig.from_env()
    config_info = _collect_config_info(cfg)

    checks: List[Dict[str, Any]] = []
    overall_ok = True

    # Ping
    t0 = time.time()
    try:
        client = _make_client()
        ok_ping = await client.ping()
        checks.append(
            {
                "name": "ping",
                "ok": bool(ok_ping),
                "error": None if ok_ping else _make_error("CONFIG_ERROR", "GRIST_BASE_URL is empty."),
                "elapsed_ms": int((time.time() - t0) * 1000),
            }
        )
        overall_ok = overall_ok and bool(ok_ping)
    except GristError as exc:
        overall_ok = False
        checks.append(
            {
                "name": "ping",
                "ok": False,
                "error": _make_error("BACKEND_ERROR", str(exc)),
                "elapsed_ms": int((time.time() - t0) * 1000),
            }
        )

    # Credential
    has_key = bool(_get_credentials().get())
    checks.append(
        {
            "name": "api_key",
            "ok": has_key,
            "error": None if has_key else _make_error("LOGIN_REQUIRED", "No API key is set."),
            "elapsed_ms": 0,
        }
    )
    overall_ok = overall_ok and has_key

    # Document catalog
    if has_key:
        t0 = time.time()
        view = await _get_session().load_documents()
        catalog_ok = view.state.value not in ("error", "auth_error")
        error = None
        if view.state.value == "auth_error":
            error = _make_error("AUTH_ERROR", "Grist rejected the API key.")
        elif view.error:
            error = _make_error("BACKEND_ERROR", view.error)
        checks.append(
            {
                "name": "list_documents",
                "ok": catalog_ok,
                "count": len(view.documents),
                "error": error,
                "elapsed_ms": int((time.time() - t0) * 1000),
            }
        )
        overall_ok = overall_ok and catalog_ok

    return {
        "ok": overall_ok,
        "mock_mode": config_info["mock_mode"],
        "config": config_info,
        "checks": checks,
        "meta": {"elapsed_ms": int((time.time() - started) * 1000)},
    }


# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------


def register_tools(server: Any) -> None:
    """Register MCP tools on an MCP Server-like instance."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(name="grist_ping", description="Basic health check for the Grist Explorer MCP server.")
    async def mcp_ping() -> Dict[str, Any]:
        return await ping()

    @server.tool(name="grist_set_api_key", description="Set the Grist API key and load the document catalog.")
    async def mcp_set_api_key(api_key: str) -> Dict[str, Any]:
        return await set_api_key(api_key=api_key)

    @server.tool(
        name="grist_fetch_api_key",
        description="Fetch the API key from the Grist profile endpoint using the configured session cookie.",
    )
    async def mcp_fetch_api_key() -> Dict[str, Any]:
        return await fetch_api_key()

    @server.tool(name="grist_logout", description="Forget the stored Grist API key.")
    async def mcp_logout() -> Dict[str, Any]:
        return await logout()

    @server.tool(
        name="grist_list_documents",
        description="Reload the documents of the target organization (same-named documents get a workspace suffix).",
    )
    async def mcp_list_documents() -> Dict[str, Any]:
        return await list_documents()

    @server.tool(name="grist_select_document", description="Select a document and list its tables.")
    async def mcp_select_document(doc_id: str) -> Dict[str, Any]:
        return await select_document(doc_id=doc_id)

    @server.tool(
        name="grist_select_table",
        description="Select a table and load its first page (resets page, sort and schema).",
    )
    async def mcp_select_table(table_id: str) -> Dict[str, Any]:
        return await select_table(table_id=table_id)

    @server.tool(
        name="grist_apply_filters",
        description=(
            "Filter rows by gender (male/female/all), dateRange {start, end} (YYYY-MM-DD), "
            "days {all, sun..sat} and a title substring."
        ),
    )
    async def mcp_apply_filters(filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await apply_filters(filters=filters)

    @server.tool(
        name="grist_set_sort",
        description='Sort by columns, e.g. [{"id": "Score", "desc": true}] or ["-Score"]; empty means row id.',
    )
    async def mcp_set_sort(sort: Optional[List[Any]] = None) -> Dict[str, Any]:
        return await set_sort(sort=sort)

    @server.tool(name="grist_set_page", description="Move to another page (0-based) and optionally change page size.")
    async def mcp_set_page(page_index: int = 0, page_size: Optional[int] = None) -> Dict[str, Any]:
        return await set_page(page_index=page_index, page_size=page_size)

    @server.tool(name="grist_view", description="Return the current view: state, columns, rendered rows and paging.")
    async def mcp_view() -> Dict[str, Any]:
        return await get_view()

    @server.tool(
        name="grist_diagnostics",
        description="Run high-level health checks against the MCP server and the Grist instance.",
    )
    async def mcp_diagnostics() -> Dict[str, Any]:
        return await diagnostics()
