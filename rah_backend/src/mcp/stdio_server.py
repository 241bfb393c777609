"""stdio MCP bridge for external assistants (Claude Desktop, Cursor, ...).

stdout carries the JSON-RPC stream, so all logging goes to stderr.
"""

from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv

from .server import create_server

logger = logging.getLogger(__name__)


def main() -> None:
    """Console entry point for ``rah-mcp-stdio``."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="[RA-H MCP] %(levelname)s %(name)s %(message)s",
    )
    mcp = create_server("stdio")
    logger.info("Starting MCP server", extra={"transport": "stdio"})
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
