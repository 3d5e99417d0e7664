# Grist Explorer MCP Server
# File: tests/test_client.py
# Version: v1

"""GristClient request/response handling against httpx.MockTransport."""

from __future__ import annotations

from typing import List

import httpx
import pytest

from grist_explorer_mcp.client import GristClient
from grist_explorer_mcp.config import GristConfig
from grist_explorer_mcp.errors import AuthorizationFailure, RequestError, ResolutionError

TOKEN = "t" * 40


def _client(handler, seen: List[httpx.Request] | None = None) -> GristClient:
    def record(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)

    config = GristConfig(base_url="https://grist.example.com/")
    return GristClient(config=config, transport=httpx.MockTransport(record))


@pytest.mark.asyncio
async def test_requests_carry_bearer_token_and_accept_json() -> None:
    seen: List[httpx.Request] = []
    client = _client(lambda r: httpx.Response(200, json=[{"id": 1}]), seen)

    await client.get_orgs(TOKEN)

    request = seen[0]
    assert str(request.url) == "https://grist.example.com/api/orgs"
    assert request.headers["Authorization"] == f"Bearer {TOKEN}"
    assert request.headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_records_and_sql_endpoints() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/records"):
            return httpx.Response(200, json={"records": [{"id": 1, "fields": {"A": 1}}, "junk"]})
        return httpx.Response(200, json={"statement": "x", "records": [{"fields": {"total": 3}}]})

    client = _client(handler, seen)

    records = await client.fetch_records(TOKEN, "doc 1", "Table1", limit=500)
    assert records == [{"id": 1, "fields": {"A": 1}}]
    assert str(seen[0].url).startswith("https://grist.example.com/api/docs/doc%201/tables/Table1/records?")
    assert seen[0].url.params["limit"] == "500"

    rows = await client.run_sql(TOKEN, "doc1", 'SELECT COUNT("id") AS total FROM "Table1"')
    assert rows == [{"fields": {"total": 3}}]
    assert seen[1].url.params["q"] == 'SELECT COUNT("id") AS total FROM "Table1"'


@pytest.mark.asyncio
async def test_tables_and_columns_unwrap_payloads() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/columns"):
            return httpx.Response(200, json={"columns": [{"id": "A", "fields": {"type": "Text"}}]})
        return httpx.Response(200, json={"tables": [{"id": "Table1"}, {"id": "Table2"}]})

    client = _client(handler)
    assert [t["id"] for t in await client.list_tables(TOKEN, "doc1")] == ["Table1", "Table2"]
    assert (await client.list_columns(TOKEN, "doc1", "Table1"))[0]["id"] == "A"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_statuses_raise_authorization_failure(status: int) -> None:
    client = _client(lambda r: httpx.Response(status, json={"error": "Forbidden"}))

    with pytest.raises(AuthorizationFailure) as exc_info:
        await client.list_tables(TOKEN, "doc1")
    assert exc_info.value.status == status


@pytest.mark.asyncio
async def test_error_message_comes_from_json_body() -> None:
    client = _client(lambda r: httpx.Response(404, json={"error": "document not found"}))

    with pytest.raises(RequestError) as exc_info:
        await client.list_tables(TOKEN, "missing")
    assert not isinstance(exc_info.value, AuthorizationFailure)
    assert str(exc_info.value) == "document not found"
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_nested_error_message_is_supported() -> None:
    client = _client(lambda r: httpx.Response(400, json={"error": {"message": "bad query"}}))

    with pytest.raises(RequestError, match="bad query"):
        await client.run_sql(TOKEN, "doc1", "SELECT")


@pytest.mark.asyncio
async def test_undecodable_error_body_falls_back_to_status() -> None:
    client = _client(lambda r: httpx.Response(502, text="<html>Bad gateway</html>"))

    with pytest.raises(RequestError, match=r"Request failed \(HTTP 502\)"):
        await client.get_orgs(TOKEN)


@pytest.mark.asyncio
async def test_non_json_success_body_is_an_error() -> None:
    client = _client(lambda r: httpx.Response(200, text="<html>login</html>"))

    with pytest.raises(RequestError, match="Non-JSON"):
        await client.get_orgs(TOKEN)


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(RequestError) as exc_info:
        await client.get_orgs(TOKEN)
    assert exc_info.value.status is None
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_missing_token_never_hits_the_network() -> None:
    seen: List[httpx.Request] = []
    client = _client(lambda r: httpx.Response(200, json=[]), seen)

    with pytest.raises(ResolutionError):
        await client.get_orgs(None)
    assert seen == []
