# Grist Explorer MCP Server
# File: tests/conftest.py
# Version: v1

from __future__ import annotations

import pytest

from grist_explorer_mcp.tools import tasks

_GRIST_ENV = (
    "GRIST_API_KEY",
    "GRIST_BASE_URL",
    "GRIST_HTTP_TIMEOUT_SECONDS",
    "GRIST_LOG_LEVEL",
    "GRIST_MOCK_MODE",
    "GRIST_PAGE_SIZE",
    "GRIST_QUERY_MODE",
    "GRIST_RECORD_LIMIT",
    "GRIST_SESSION_COOKIE",
    "GRIST_TARGET_ORG_DOMAIN",
    "GRIST_TIMEZONE",
    "GRIST_VERIFY_TLS",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep tests away from the real environment and ~/.grist_explorer."""
    for name in _GRIST_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GRIST_CREDENTIAL_FILE", "")
    tasks.reset_session()
    yield
    tasks.reset_session()
