"""
Grocy MCP Server

Protocol core: builds one MCP ``Server`` per client session on top of the
shared tool registry, and runs the stdio transport (plus the HTTP transport
when enabled).

Error Handling Strategy:
- Configuration errors are fatal: logged as CRITICAL, exit code 1
- Errors are logged to stderr; stdout carries only the stdio protocol stream
- Tool failures become protocol errors or error results, never crashes
"""

import logging
import sys
import traceback
from typing import Optional

# Configure logging FIRST, before any other imports that might log
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("grocy-mcp")

import anyio  # noqa: E402
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream  # noqa: E402
from dotenv import load_dotenv  # noqa: E402
from mcp import types  # noqa: E402
from mcp.server import Server  # noqa: E402
from mcp.server.stdio import stdio_server  # noqa: E402
from mcp.shared.message import SessionMessage  # noqa: E402

from . import __version__  # noqa: E402
from .config import Settings  # noqa: E402
from .dispatch import AppContext, ToolDispatcher, build_app_context  # noqa: E402
from .errors import ConfigurationError  # noqa: E402

SERVER_NAME = "grocy-mcp"


def create_server(context: AppContext) -> Server:
    """Create a protocol server for one session.

    Each call returns a fresh ``Server`` with its own dispatcher; only the
    read-only registry, policy, client and resources are shared.

    The handlers are installed in ``request_handlers`` directly so that
    protocol errors raised by the dispatcher reach the client with their
    own error codes.
    """
    server = Server(SERVER_NAME, version=__version__)
    dispatcher = ToolDispatcher(context)
    resources = context.resources

    async def list_tools(req: types.ListToolsRequest) -> types.ServerResult:
        tools = dispatcher.list_tools()
        logger.debug(f"list_tools called, returning {len(tools)} tools")
        return types.ServerResult(types.ListToolsResult(tools=tools))

    async def call_tool(req: types.CallToolRequest) -> types.ServerResult:
        result = await dispatcher.call_tool(req.params.name, req.params.arguments)
        return types.ServerResult(result)

    async def list_resources(req: types.ListResourcesRequest) -> types.ServerResult:
        return types.ServerResult(types.ListResourcesResult(resources=resources.list_resources()))

    async def read_resource(req: types.ReadResourceRequest) -> types.ServerResult:
        return types.ServerResult(resources.read_resource(str(req.params.uri)))

    server.request_handlers[types.ListToolsRequest] = list_tools
    server.request_handlers[types.CallToolRequest] = call_tool
    server.request_handlers[types.ListResourcesRequest] = list_resources
    server.request_handlers[types.ReadResourceRequest] = read_resource

    return server


# =============================================================================
# Session loop
# =============================================================================

def _not_initialized(request: types.JSONRPCRequest) -> SessionMessage:
    error = types.ErrorData(
        code=types.INVALID_REQUEST,
        message=f"Session not initialized: send 'initialize' and 'notifications/initialized' before '{request.method}'",
    )
    return SessionMessage(types.JSONRPCMessage(types.JSONRPCError(jsonrpc="2.0", id=request.id, error=error)))


async def serve_session(
    server: Server,
    read_stream: MemoryObjectReceiveStream,
    write_stream: MemoryObjectSendStream,
    **run_options,
) -> None:
    """Run ``server`` for one session, refusing requests sent before the handshake.

    Until the client has sent ``initialize`` and ``notifications/initialized``,
    every request other than those two and ``ping`` is answered here with an
    invalid-request error naming the handshake; the session stays open.
    """
    gated_send, gated_receive = anyio.create_memory_object_stream[SessionMessage | Exception](0)

    async def gate():
        initialized = False
        async with gated_send:
            async for message in read_stream:
                if not initialized and isinstance(message, SessionMessage):
                    root = message.message.root
                    if isinstance(root, types.JSONRPCNotification) and root.method == "notifications/initialized":
                        initialized = True
                    elif isinstance(root, types.JSONRPCRequest) and root.method not in ("initialize", "ping"):
                        logger.warning(f"Request '{root.method}' received before initialization")
                        try:
                            await write_stream.send(_not_initialized(root))
                        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                            return
                        continue
                await gated_send.send(message)

    async with anyio.create_task_group() as tg:
        tg.start_soon(gate)
        await server.run(gated_receive, write_stream, server.create_initialization_options(), **run_options)
        tg.cancel_scope.cancel()


# =============================================================================
# Main Entry Point
# =============================================================================

async def run_stdio(context: AppContext) -> None:
    """Serve one session over stdin/stdout until the client disconnects."""
    server = create_server(context)
    logger.info("Opening stdio transport...")
    async with stdio_server() as (read_stream, write_stream):
        logger.info("Transport ready, starting server loop...")
        await serve_session(server, read_stream, write_stream)
    logger.info("stdio session closed")


async def run(context: Optional[AppContext] = None) -> None:
    """Run the stdio transport, and the HTTP transport alongside it when enabled.

    With HTTP enabled the process keeps serving HTTP after the stdio
    client goes away.
    """
    if context is None:
        context = build_app_context(Settings.from_env())

    logger.info("=" * 60)
    logger.info(f"Starting Grocy MCP Server {__version__}...")
    logger.info("=" * 60)

    try:
        async with anyio.create_task_group() as tg:
            if context.settings.enable_http_server:
                from .http_server import serve

                tg.start_soon(serve, context)
            await run_stdio(context)
    except Exception as e:
        logger.critical(f"Server runtime error: {e}")
        logger.critical(f"Traceback:\n{traceback.format_exc()}")
        raise
    finally:
        logger.info("Server shutdown complete")


def load_context() -> AppContext:
    """Read ``.env`` and the environment, validate everything, build the app context.

    Exits the process with code 1 on a configuration error.
    """
    load_dotenv()
    try:
        settings = Settings.from_env()
        settings.log_summary()
        return build_app_context(settings)
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        sys.exit(1)


def main():
    """Main entry point (stdio, optionally with HTTP)."""
    import asyncio

    logger.info(f"Python version: {sys.version}")
    context = load_context()

    try:
        asyncio.run(run(context))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.critical(f"FATAL ERROR: {type(e).__name__}: {e}")
        logger.critical(f"Full traceback:\n{traceback.format_exc()}")
        sys.exit(1)


if __name__ == "__main__":
    main()
