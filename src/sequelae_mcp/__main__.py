"""Main entry point for the sequelae MCP server.

This module provides the CLI entry point for running the MCP server
using FastMCP with stdio transport.
"""

import anyio

from sequelae_mcp.server import mcp


def main() -> None:
    """Run the sequelae MCP server over stdio.

    The lifespan context manager loads settings, configures logging on
    stderr, builds the executor and closes the connection pool on exit.

    Example:
        >>> DATABASE_URL=postgresql://localhost/app python -m sequelae_mcp
    """
    anyio.run(mcp.run_stdio_async)


if __name__ == "__main__":
    main()
