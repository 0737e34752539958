"""
MCP server for data volume provisioning and expansion.
"""
import logging
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.types import Tool, TextContent

from .volume_tools import get_data_volume_tools, handle_data_volume_tool

# Configure logging - log to both file and stderr
# File logging allows tailing progress: tail -f /tmp/datavol-mcp.log
log_file = Path("/tmp/datavol-mcp.log")
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_file, mode='a'),  # Append mode
        logging.StreamHandler()  # stderr - may show in MCP client
    ]
)
logger = logging.getLogger(__name__)
logger.info("datavol-mcp server starting")
logger.info(f"Log file: {log_file}")

# Initialize server
app = Server("datavol-mcp")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return get_data_volume_tools()


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    logger.info(f"Tool call: {name}")
    return await handle_data_volume_tool(name, arguments or {})


def main():
    """Main entry point for the MCP server."""
    import asyncio
    import mcp.server.stdio

    async def run():
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options()
            )

    asyncio.run(run())


if __name__ == "__main__":
    main()
