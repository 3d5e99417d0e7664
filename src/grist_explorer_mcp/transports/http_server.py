# Grist Explorer MCP Server
# File: transports/http_server.py
# Version: v1

"""Streamable-HTTP entrypoint for the Grist Explorer MCP server.

Host and port come from FastMCP's own FASTMCP_HOST / FASTMCP_PORT settings.
"""

from __future__ import annotations

from ..config import configure_logging
from ..tools import build_server


def main() -> None:
    configure_logging()
    mcp = build_server()
    mcp.run(transport="streamable-http")


if __name__ == "__main__":
    main()
