"""
Frappe MCP Server with SSE transport

Run with:
    uvicorn frappe_mcp.sse_server:app --host 0.0.0.0 --port 8003
"""

from contextlib import asynccontextmanager

from mcp.server.sse import SseServerTransport
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route

from . import __version__
from .config import get_settings
from .health import check_frappe_api_health
from .hints import initialize_static_hints
from .log import configure_logging
from .server import SERVER_NAME
from .server import app as mcp_server

# ──────────────────────────────────────────────────────────────
# SSE Transport Setup
# ──────────────────────────────────────────────────────────────

# The endpoint must match the Mount path below
sse_transport = SseServerTransport("/messages/")


async def _handle_sse_asgi(scope, receive, send):
    """Raw ASGI handler for SSE connections."""
    async with sse_transport.connect_sse(scope, receive, send) as streams:
        await mcp_server.run(
            streams[0], streams[1],
            mcp_server.create_initialization_options()
        )


async def handle_sse(request: Request) -> Response:
    """
    Starlette Route endpoint for SSE.

    Starlette's Route gives us a Request object, but MCP's connect_sse
    needs raw ASGI (scope, receive, send), so pass those through.
    """
    await _handle_sse_asgi(
        request.scope,
        request.receive,
        request._send,  # type: ignore[reportPrivateUsage]
    )
    return Response()


async def health(request: Request) -> JSONResponse:
    """Health check endpoint, including Frappe token auth with the environment credentials."""
    result = await check_frappe_api_health()
    return JSONResponse(
        {
            "status": "ok" if result.healthy else "degraded",
            "server": SERVER_NAME,
            "transport": "sse",
            "version": __version__,
            "frappe": result.to_dict(),
        }
    )


@asynccontextmanager
async def lifespan(app: Starlette):
    configure_logging(get_settings().log_level)
    initialize_static_hints()
    yield


# Create Starlette app
app = Starlette(
    routes=[
        Route("/health", endpoint=health, methods=["GET"]),
        Route("/sse", endpoint=handle_sse, methods=["GET"]),
        Mount("/messages/", app=sse_transport.handle_post_message),
    ],
    lifespan=lifespan,
)
