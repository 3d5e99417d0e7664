# Grist Explorer MCP Server
# File: orchestrator.py
# Version: v1

"""Data Fetch Orchestrator.

Drives the cascade credential -> documents -> tables -> schema + rows as an
explicit state machine::

    IDLE -> LOADING_CATALOG -> IDLE (documents ready for selection)
         -> LOADING_TABLES  -> IDLE (tables ready for selection)
         -> LOADING_DATA    -> READY
    any loading state -> AUTH_ERROR (401/403) | ERROR (anything else)

Each dependency level (catalog, tables, data) has a generation counter.
Every fetch is tagged with the generation and the selection snapshot it
was started for, and its result is only applied if both still match when
it resolves. Superseded fetches are never cancelled, only discarded.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import tzinfo
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .catalog import resolve_documents
from .client import GristClient
from .columns import ColumnDefinition, derive_columns, generic_sort_key, render_rows
from .config import QUERY_MODE_LOCAL, QUERY_MODE_SERVER, GristConfig
from .credentials import CredentialHolder
from .errors import AuthorizationFailure, GristError, RequestError
from .models import (
    ColumnSchemaEntry,
    Document,
    FilterCriteria,
    PageWindow,
    RowRecord,
    SortKey,
    SortSpec,
    Table,
)
from .query import (
    ROW_ID,
    apply_local_filters,
    build_count_query,
    build_order_by_clause,
    build_page_query,
    build_where_clause,
    paginate,
    quote_identifier,
    sort_records,
)
from .tables import resolve_schema, resolve_tables

logger = logging.getLogger(__name__)

LEVEL_CATALOG = "catalog"
LEVEL_TABLES = "tables"
LEVEL_DATA = "data"
LEVELS = (LEVEL_CATALOG, LEVEL_TABLES, LEVEL_DATA)


class FetchState(str, Enum):
    IDLE = "idle"
    LOADING_CATALOG = "loading_catalog"
    LOADING_TABLES = "loading_tables"
    LOADING_DATA = "loading_data"
    READY = "ready"
    AUTH_ERROR = "auth_error"
    ERROR = "error"


_LOADING_STATE = {
    LEVEL_CATALOG: FetchState.LOADING_CATALOG,
    LEVEL_TABLES: FetchState.LOADING_TABLES,
    LEVEL_DATA: FetchState.LOADING_DATA,
}


@dataclass(frozen=True)
class _Ticket:
    """Identity of one fetch: its level, generation and selection snapshot."""

    level: str
    generation: int
    key: Tuple[Any, ...]
    token: Optional[str]


@dataclass
class ViewModel:
    """Snapshot handed to presentation collaborators."""

    state: FetchState
    is_loading: bool
    error: str
    login_required: bool
    documents: List[Document]
    tables: List[Table]
    selected_document_id: Optional[str]
    selected_table_id: Optional[str]
    columns: List[ColumnDefinition]
    rows: Optional[List[RowRecord]]
    total_records: int
    pagination: PageWindow
    sort: SortSpec
    filters: FilterCriteria
    query_mode: str = QUERY_MODE_LOCAL
    tz: Optional[tzinfo] = field(default=None, repr=False)

    @property
    def page_count(self) -> int:
        if not self.total_records:
            return 0
        return math.ceil(self.total_records / self.pagination.page_size)

    def render_rows(self) -> List[Dict[str, Any]]:
        return render_rows(self.columns, self.rows or [], self.tz)

    def to_dict(self) -> Dict[str, Any]:
        filters = self.filters
        return {
            "state": self.state.value,
            "is_loading": self.is_loading,
            "error": self.error or None,
            "login_required": self.login_required,
            "documents": [
                {"id": d.id, "name": d.name, "workspace": d.workspace_name, "display_name": d.display_name}
                for d in self.documents
            ],
            "tables": [{"id": t.id} for t in self.tables],
            "selected_document_id": self.selected_document_id,
            "selected_table_id": self.selected_table_id,
            "columns": [c.to_dict() for c in self.columns],
            "rows": self.render_rows() if self.rows is not None else None,
            "total_records": self.total_records,
            "page_count": self.page_count,
            "pagination": {
                "page_index": self.pagination.page_index,
                "page_size": self.pagination.page_size,
            },
            "sort": [{"id": k.column_id, "desc": k.descending} for k in self.sort],
            "filters": {
                "gender": filters.gender,
                "start": filters.start.isoformat() if filters.start else None,
                "end": filters.end.isoformat() if filters.end else None,
                "all_days": filters.all_days,
                "days": sorted(filters.days),
                "title": filters.title,
                "analysis_type": filters.analysis_type,
            },
            "query_mode": self.query_mode,
        }


def _extract_count(records: Sequence[Dict[str, Any]]) -> int:
    if not records:
        return 0
    fields = records[0].get("fields")
    if not isinstance(fields, dict):
        fields = records[0]
    value = fields.get("total")
    if value is None and fields:
        value = next(iter(fields.values()))
    try:
        return int(value or 0)
    except (TypeError, ValueError) as exc:
        raise RequestError(f"Unexpected count result: {value!r}") from exc


class DataOrchestrator:
    """Single owner of the browsing state for one session."""

    def __init__(
        self,
        client: GristClient,
        credentials: CredentialHolder,
        *,
        query_mode: str = QUERY_MODE_LOCAL,
        page_size: int = 10,
        record_limit: int = 500,
        target_org_domain: Optional[str] = None,
        tz: Optional[tzinfo] = None,
        on_auth_error: Optional[Callable[[], None]] = None,
    ) -> None:
        if query_mode not in (QUERY_MODE_LOCAL, QUERY_MODE_SERVER):
            raise ValueError(f"Unknown query mode {query_mode!r}.")

        self._client = client
        self._credentials = credentials
        self._query_mode = query_mode
        self._page_size = int(page_size)
        self._record_limit = int(record_limit)
        self._target_org_domain = target_org_domain
        self._tz = tz
        self._on_auth_error = on_auth_error

        self._generations: Dict[str, int] = {level: 0 for level in LEVELS}
        self._loading: set[str] = set()

        self._state = FetchState.IDLE
        self._error = ""
        self._login_required = not bool(credentials.get())

        self._documents: List[Document] = []
        self._tables: List[Table] = []
        self._selected_doc: Optional[str] = None
        self._selected_table: Optional[str] = None

        self._filters = FilterCriteria()
        self._sort: SortSpec = ()
        self._page = PageWindow(0, self._page_size)

        self._schema: Optional[List[ColumnSchemaEntry]] = None
        self._schema_key: Optional[Tuple[str, str]] = None
        self._columns: List[ColumnDefinition] = []
        self._rows: Optional[List[RowRecord]] = None
        self._total = 0

    @classmethod
    def from_config(
        cls,
        config: GristConfig,
        client: GristClient,
        credentials: CredentialHolder,
        on_auth_error: Optional[Callable[[], None]] = None,
    ) -> "DataOrchestrator":
        return cls(
            client,
            credentials,
            query_mode=config.query_mode,
            page_size=config.page_size,
            record_limit=config.record_limit,
            target_org_domain=config.target_org_domain,
            tz=config.timezone,
            on_auth_error=on_auth_error,
        )

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    @property
    def state(self) -> FetchState:
        return self._state

    def view(self) -> ViewModel:
        return ViewModel(
            state=self._state,
            is_loading=bool(self._loading),
            error=self._error,
            login_required=self._login_required,
            documents=list(self._documents),
            tables=list(self._tables),
            selected_document_id=self._selected_doc,
            selected_table_id=self._selected_table,
            columns=list(self._columns),
            rows=list(self._rows) if self._rows is not None else None,
            total_records=self._total,
            pagination=self._page,
            sort=self._sort,
            filters=self._filters,
            query_mode=self._query_mode,
            tz=self._tz,
        )

    # ------------------------------------------------------------------
    # Staleness guard
    # ------------------------------------------------------------------

    def _dependency_key(self, level: str) -> Tuple[Any, ...]:
        token = self._credentials.get()
        if level == LEVEL_CATALOG:
            return (token,)
        if level == LEVEL_TABLES:
            return (token, self._selected_doc)
        return (
            token,
            self._selected_doc,
            self._selected_table,
            self._filters,
            self._sort,
            self._page,
        )

    def _invalidate(self, *levels: str) -> None:
        for level in levels:
            self._generations[level] += 1
            self._loading.discard(level)

    def _begin(self, level: str) -> _Ticket:
        self._invalidate(level)
        self._loading.add(level)
        self._state = _LOADING_STATE[level]
        self._error = ""
        return _Ticket(
            level=level,
            generation=self._generations[level],
            key=self._dependency_key(level),
            token=self._credentials.get(),
        )

    def _is_current(self, ticket: _Ticket) -> bool:
        current = (
            self._generations[ticket.level] == ticket.generation
            and self._dependency_key(ticket.level) == ticket.key
        )
        if not current:
            logger.debug("Discarding stale %s result (generation %d).", ticket.level, ticket.generation)
        return current

    def _settled_state(self) -> FetchState:
        """State implied by what is still loading and what data is held."""
        if LEVEL_DATA in self._loading:
            return FetchState.LOADING_DATA
        if self._rows is not None:
            return FetchState.READY
        if LEVEL_TABLES in self._loading:
            return FetchState.LOADING_TABLES
        if LEVEL_CATALOG in self._loading:
            return FetchState.LOADING_CATALOG
        return FetchState.IDLE

    def _finish(self, ticket: _Ticket) -> None:
        self._loading.discard(ticket.level)
        self._state = self._settled_state()

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _clear_catalog(self) -> None:
        self._documents = []

    def _clear_tables(self) -> None:
        self._tables = []

    def _clear_data(self) -> None:
        self._schema = None
        self._schema_key = None
        self._columns = []
        self._rows = None
        self._total = 0

    def _fail(self, ticket: _Ticket, exc: GristError) -> None:
        if isinstance(exc, AuthorizationFailure):
            # Even a superseded request proves its key is dead, unless the
            # key was replaced in the meantime.
            if not self._credentials.invalidate(ticket.token):
                logger.debug("Ignoring %s auth failure for a replaced key.", ticket.level)
                return
            logger.warning("Authorization failure during %s fetch: %s", ticket.level, exc)
            self._invalidate(*LEVELS)
            self._clear_catalog()
            self._clear_tables()
            self._clear_data()
            self._selected_doc = None
            self._selected_table = None
            self._state = FetchState.AUTH_ERROR
            self._error = ""
            self._login_required = True
            if self._on_auth_error is not None:
                self._on_auth_error()
            return

        if not self._is_current(ticket):
            return

        logger.warning("%s fetch failed: %s", ticket.level.capitalize(), exc)
        self._loading.discard(ticket.level)
        if ticket.level == LEVEL_CATALOG:
            self._clear_catalog()
        elif ticket.level == LEVEL_TABLES:
            self._clear_tables()
        self._clear_data()
        self._state = FetchState.ERROR
        self._error = str(exc)

    # ------------------------------------------------------------------
    # Credential
    # ------------------------------------------------------------------

    def _reset_selection(self) -> None:
        self._invalidate(*LEVELS)
        self._clear_catalog()
        self._clear_tables()
        self._clear_data()
        self._selected_doc = None
        self._selected_table = None
        self._sort = ()
        self._page = PageWindow(0, self._page_size)

    async def set_credential(self, token: str) -> ViewModel:
        """Store a new key and reload the document catalog with it."""
        self._credentials.set(token)
        self._login_required = False
        self._reset_selection()
        return await self.load_documents()

    async def clear_credential(self) -> ViewModel:
        self._credentials.clear()
        self._login_required = True
        self._reset_selection()
        self._state = FetchState.IDLE
        self._error = ""
        return self.view()

    # ------------------------------------------------------------------
    # Catalog level
    # ------------------------------------------------------------------

    async def load_documents(self) -> ViewModel:
        if not self._credentials.get():
            self._invalidate(LEVEL_CATALOG)
            self._clear_catalog()
            self._state = FetchState.IDLE
            return self.view()

        ticket = self._begin(LEVEL_CATALOG)
        try:
            documents = await resolve_documents(self._client, ticket.token, self._target_org_domain)
        except GristError as exc:
            self._fail(ticket, exc)
            return self.view()

        if self._is_current(ticket):
            self._documents = documents
            self._finish(ticket)
        return self.view()

    # ------------------------------------------------------------------
    # Tables level
    # ------------------------------------------------------------------

    async def select_document(self, doc_id: Optional[str]) -> ViewModel:
        """Select a document; this always drops the selected table."""
        self._selected_doc = doc_id or None
        self._selected_table = None
        self._invalidate(LEVEL_TABLES, LEVEL_DATA)
        self._clear_tables()
        self._clear_data()
        self._sort = ()
        self._page = replace(self._page, page_index=0)

        if not self._selected_doc or not self._credentials.get():
            self._state = FetchState.IDLE
            return self.view()

        ticket = self._begin(LEVEL_TABLES)
        try:
            tables = await resolve_tables(self._client, ticket.token, self._selected_doc)
        except GristError as exc:
            self._fail(ticket, exc)
            return self.view()

        if self._is_current(ticket):
            self._tables = tables
            self._finish(ticket)
        return self.view()

    # ------------------------------------------------------------------
    # Data level
    # ------------------------------------------------------------------

    def _reset_for_new_query(self) -> None:
        self._page = replace(self._page, page_index=0)
        self._sort = ()
        self._schema = None
        self._schema_key = None

    async def select_table(self, table_id: Optional[str]) -> ViewModel:
        self._selected_table = table_id or None
        self._reset_for_new_query()
        return await self._load_data()

    async def apply_filters(self, criteria: Optional[FilterCriteria]) -> ViewModel:
        self._filters = criteria or FilterCriteria()
        self._reset_for_new_query()
        return await self._load_data()

    async def set_sort(self, sort: Sequence[SortKey]) -> ViewModel:
        """Change the sort order.

        Raises ValueError for malformed ids, for ``id`` (always the implicit
        tie-breaker) and for columns that are not sortable in the current table.
        """
        allowed = None
        if self._schema is not None:
            allowed = {c.id for c in self._columns if c.sortable}
        for key in sort:
            if key.column_id == ROW_ID:
                raise ValueError("The id column is not sortable; rows are ordered by id by default.")
            quote_identifier(key.column_id, allowed)

        self._sort = tuple(sort)
        self._page = replace(self._page, page_index=0)
        return await self._load_data()

    async def set_page(self, window: PageWindow) -> ViewModel:
        self._page = window
        return await self._load_data()

    async def refresh(self) -> ViewModel:
        if self._selected_table:
            return await self._load_data()
        if self._selected_doc:
            return await self.select_document(self._selected_doc)
        return await self.load_documents()

    async def _load_data(self) -> ViewModel:
        if not self._selected_table or not self._selected_doc or not self._credentials.get():
            self._invalidate(LEVEL_DATA)
            self._clear_data()
            self._state = FetchState.IDLE
            return self.view()

        ticket = self._begin(LEVEL_DATA)
        doc_id, table_id = self._selected_doc, self._selected_table
        filters, sort, page = self._filters, self._sort, self._page

        cached_schema = self._schema if self._schema_key == (doc_id, table_id) else None

        try:
            if self._query_mode == QUERY_MODE_SERVER:
                schema, rows, total = await self._fetch_server_page(
                    ticket.token, doc_id, table_id, filters, sort, page, cached_schema
                )
            else:
                schema, rows, total = await self._fetch_local_page(
                    ticket.token, doc_id, table_id, filters, sort, page, cached_schema
                )
        except GristError as exc:
            self._fail(ticket, exc)
            return self.view()

        if self._is_current(ticket):
            self._schema = schema
            self._schema_key = (doc_id, table_id)
            self._columns = derive_columns(schema)
            self._rows = rows
            self._total = total
            self._finish(ticket)
        return self.view()

    async def _fetch_server_page(
        self,
        token: Optional[str],
        doc_id: str,
        table_id: str,
        filters: FilterCriteria,
        sort: SortSpec,
        page: PageWindow,
        cached_schema: Optional[List[ColumnSchemaEntry]],
    ) -> Tuple[List[ColumnSchemaEntry], List[RowRecord], int]:
        allowed = [c.id for c in cached_schema] if cached_schema is not None else None
        where = build_where_clause(filters, self._tz)
        order_by = build_order_by_clause(sort, allowed)

        count_records = await self._client.run_sql(token, doc_id, build_count_query(table_id, where))
        total = _extract_count(count_records)

        rows: List[RowRecord] = []
        if total > 0:
            raw_rows = await self._client.run_sql(
                token, doc_id, build_page_query(table_id, where, order_by, page)
            )
            rows = [RowRecord.from_api(r) for r in raw_rows]

        schema = cached_schema
        if schema is None:
            schema = await resolve_schema(self._client, token, doc_id, table_id)
        return schema, rows, total

    async def _fetch_local_page(
        self,
        token: Optional[str],
        doc_id: str,
        table_id: str,
        filters: FilterCriteria,
        sort: SortSpec,
        page: PageWindow,
        cached_schema: Optional[List[ColumnSchemaEntry]],
    ) -> Tuple[List[ColumnSchemaEntry], List[RowRecord], int]:
        records_call = self._client.fetch_records(token, doc_id, table_id, limit=self._record_limit)
        if cached_schema is None:
            # Await both calls; the first failure is re-raised.
            results = await asyncio.gather(
                records_call,
                resolve_schema(self._client, token, doc_id, table_id),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            raw_records, schema = results
        else:
            raw_records, schema = await records_call, cached_schema

        rows = apply_local_filters((RowRecord.from_api(r) for r in raw_records), filters, self._tz)

        sort_keys = {c.id: c.sort_key for c in derive_columns(schema)}
        ordered = sort_records(rows, sort, sort_keys, generic_sort_key)
        return schema, paginate(ordered, page), len(ordered)
