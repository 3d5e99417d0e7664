# Grist Explorer MCP Server
# File: client.py
# Version: v1
"""High-level client for the Grist REST API.

Implements:

- get_orgs() / list_workspaces() for the document catalog
- list_tables() / list_columns() for tables and their schema
- fetch_records() for the full-table records endpoint
- run_sql() for the ad-hoc SQL endpoint

Every call takes the bearer token explicitly; the CredentialHolder stays
the only owner of the current key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from httpx import RequestError as HTTPTransportError

from .config import GristConfig
from .errors import AuthorizationFailure, RequestError, ResolutionError, is_auth_status

logger = logging.getLogger(__name__)


def _segment(value: Any) -> str:
    """Quote a single URL path segment (document / table / org ids)."""
    return quote(str(value), safe="")


def _error_message(response: httpx.Response) -> str:
    """Pull a readable message out of an error response body."""
    fallback = f"Request failed (HTTP {response.status_code})"
    try:
        data = response.json()
    except ValueError:
        return fallback

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        if isinstance(error, str) and error.strip():
            return error.strip()
        message = data.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return fallback


@dataclass
class GristClient:
    """Wrapper around the Grist organization, document and data endpoints."""

    config: GristConfig
    transport: Optional[httpx.AsyncBaseTransport] = None

    # ------------------------------------------------------------------
    # Basic health
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Lightweight health check: a base URL is configured."""
        return bool(self.config.base_url)

    # ------------------------------------------------------------------
    # Shared request helper
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        token: Optional[str],
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not token:
            raise ResolutionError("API key is not set.")

        base_url = self.config.base_url.rstrip("/")
        url = f"{base_url}{path}"

        query = {k: v for k, v in (params or {}).items() if v is not None and v != ""}

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

        async with httpx.AsyncClient(
            timeout=self.config.http_timeout_seconds,
            verify=self.config.verify_tls,
            transport=self.transport,
        ) as http_client:
            try:
                response = await http_client.get(url, headers=headers, params=query or None)
            except HTTPTransportError as exc:
                raise RequestError(f"Error calling Grist API at '{url}': {exc}", url=url) from exc

        status = response.status_code
        if is_auth_status(status):
            logger.warning("Grist API refused credentials for '%s' (HTTP %s).", path, status)
            raise AuthorizationFailure(_error_message(response), status=status, url=url)

        if not response.is_success:
            raise RequestError(_error_message(response), status=status, url=url)

        try:
            return response.json()
        except ValueError as exc:
            raise RequestError(
                f"Non-JSON response from '{url}' (HTTP {status}).", status=status, url=url
            ) from exc

    # ------------------------------------------------------------------
    # Catalog: organizations & workspaces
    # ------------------------------------------------------------------

    async def get_orgs(self, token: Optional[str]) -> Any:
        """Return the raw /api/orgs payload (a list, or a single org object)."""
        return await self._get_json(token, "/api/orgs")

    async def list_workspaces(self, token: Optional[str], org_id: Any) -> List[Dict[str, Any]]:
        """List workspaces (each with its ``docs``) of an organization."""
        data = await self._get_json(token, f"/api/orgs/{_segment(org_id)}/workspaces")
        if not isinstance(data, list):
            return []
        return [w for w in data if isinstance(w, dict)]

    # ------------------------------------------------------------------
    # Document structure: tables & columns
    # ------------------------------------------------------------------

    async def list_tables(self, token: Optional[str], doc_id: str) -> List[Dict[str, Any]]:
        data = await self._get_json(token, f"/api/docs/{_segment(doc_id)}/tables")
        raw_tables = data.get("tables") if isinstance(data, dict) else data
        if not isinstance(raw_tables, list):
            return []
        return [t for t in raw_tables if isinstance(t, dict)]

    async def list_columns(
        self,
        token: Optional[str],
        doc_id: str,
        table_id: str,
    ) -> List[Dict[str, Any]]:
        data = await self._get_json(
            token,
            f"/api/docs/{_segment(doc_id)}/tables/{_segment(table_id)}/columns",
        )
        raw_columns = data.get("columns") if isinstance(data, dict) else data
        if not isinstance(raw_columns, list):
            return []
        return [c for c in raw_columns if isinstance(c, dict)]

    # ------------------------------------------------------------------
    # Data: records & SQL
    # ------------------------------------------------------------------

    async def fetch_records(
        self,
        token: Optional[str],
        doc_id: str,
        table_id: str,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch up to ``limit`` records as ``[{id, fields}]``."""
        data = await self._get_json(
            token,
            f"/api/docs/{_segment(doc_id)}/tables/{_segment(table_id)}/records",
            params={"limit": int(limit) if limit else None},
        )
        raw_records = data.get("records") if isinstance(data, dict) else data
        if not isinstance(raw_records, list):
            return []
        return [r for r in raw_records if isinstance(r, dict)]

    async def run_sql(self, token: Optional[str], doc_id: str, sql: str) -> List[Dict[str, Any]]:
        """Run a read-only SQL statement against a document.

        The SQL endpoint answers ``{"records": [{"fields": {...}}]}``.
        """
        logger.debug("Running SQL on doc %s: %s", doc_id, sql)
        data = await self._get_json(token, f"/api/docs/{_segment(doc_id)}/sql", params={"q": sql})
        raw_records = data.get("records") if isinstance(data, dict) else None
        if not isinstance(raw_records, list):
            return []
        return [r for r in raw_records if isinstance(r, dict)]
