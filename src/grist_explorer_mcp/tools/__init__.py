# Grist Explorer MCP Server
# File: tools/__init__.py
# Version: v1

"""Helpers for building the MCP server and registering its tools."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP  # type: ignore[import]

from . import tasks

SERVER_NAME = "grist-explorer-mcp"


def build_server(name: str = SERVER_NAME) -> FastMCP:
    """Create a FastMCP instance with every Grist tool registered."""
    mcp = FastMCP(name)
    tasks.register_tools(mcp)
    return mcp
