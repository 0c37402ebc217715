"""
Frappe MCP Server using the official MCP library

Run with:
    frappe-mcp-server            # stdio transport (Claude Desktop and other local agents)
    frappe-mcp-server --sse      # SSE transport on FRAPPE_MCP_HOST:FRAPPE_MCP_PORT

Client config (stdio, default credentials via env):
    {
      "mcpServers": {
        "frappe": {
          "command": "frappe-mcp-server",
          "env": {
            "FRAPPE_URL": "http://localhost:8000",
            "FRAPPE_API_KEY": "...",
            "FRAPPE_API_SECRET": "..."
          }
        }
      }
    }
"""

import asyncio
import sys

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, Resource, ResourceTemplate, Tool
from pydantic import AnyUrl

from . import __version__
from .config import get_settings
from .hints import initialize_static_hints
from .log import configure_logging, get_logger
from .resources import MIME_TYPE, RESOURCE_TEMPLATES, RESOURCES, read_schema_resource
from .tools import TOOLS, handle_tool_call

SERVER_NAME = "frappe-mcp-server"

logger = get_logger("server")

# Create MCP Server
app = Server(SERVER_NAME, version=__version__)


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return TOOLS


# Argument checks happen in the dispatcher so callers get its error messages
@app.call_tool(validate_input=False)
async def call_tool(name: str, arguments: dict) -> CallToolResult:
    """Handle tool calls."""
    return await handle_tool_call(name, arguments)


@app.list_resources()
async def list_resources() -> list[Resource]:
    return RESOURCES


@app.list_resource_templates()
async def list_resource_templates() -> list[ResourceTemplate]:
    return RESOURCE_TEMPLATES


@app.read_resource()
async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
    text = await read_schema_resource(str(uri))
    return [ReadResourceContents(content=text, mime_type=MIME_TYPE)]


async def run_stdio():
    """Run the server over stdio."""
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def main(argv: list[str] | None = None):
    argv = sys.argv[1:] if argv is None else argv
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_static_hints()

    if "--sse" in argv:
        import uvicorn

        from .sse_server import app as sse_app

        logger.info("Starting %s (sse transport) on http://%s:%s/sse", SERVER_NAME, settings.host, settings.port)
        logger.info("Frappe URL: %s", settings.frappe_url)
        uvicorn.run(sse_app, host=settings.host, port=settings.port)
    else:
        logger.info("Starting %s (stdio transport)", SERVER_NAME)
        asyncio.run(run_stdio())


if __name__ == "__main__":
    main()
