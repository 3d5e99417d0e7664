# Grist Explorer MCP Server
# File: transports/stdio_server.py
# Version: v1

"""STDIO entrypoint for the Grist Explorer MCP server.

This is the script behind the ``grist-explorer-mcp`` console command.
"""

from __future__ import annotations

from ..config import configure_logging
from ..tools import build_server


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    configure_logging()
    mcp = build_server()

    # Let FastMCP handle stdio + event loop setup.
    mcp.run()


if __name__ == "__main__":
    main()
