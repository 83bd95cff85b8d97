"""
Grocy MCP HTTP Server

Streamable HTTP (``/mcp``) and SSE (``/mcp/sse`` + ``/mcp/messages``)
transports. Every client session gets its own protocol server instance,
so responses can never be delivered to the wrong client.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

import anyio
from anyio.abc import TaskGroup
import uvicorn
from mcp import types
from mcp.server import Server
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from mcp.shared.message import SessionMessage
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from . import __version__
from .dispatch import AppContext
from .server import SERVER_NAME, create_server, load_context, serve_session
from .sessions import SSE, STREAMABLE, LiveSession, SessionTable, new_session_token

logger = logging.getLogger("grocy-mcp")

ServerFactory = Callable[[], Server]
ASGIHandler = Callable[[Scope, Receive, Send], Awaitable[None]]

MESSAGES_PATH = "/mcp/messages"

JSON_MEDIA = "application/json"
SSE_MEDIA = "text/event-stream"

# Upper bound on how long an idle session outlives its timeout.
REAP_INTERVAL_MAX = 60.0

ENDPOINTS = {
    "streamable": "/mcp",
    "sse": "/mcp/sse",
    "sseMessages": MESSAGES_PATH,
}


def _jsonrpc_error(status_code: int, code: int, message: str) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": None},
        status_code=status_code,
    )


def _accepted(request: Request) -> set[str]:
    return {part.split(";")[0].strip().lower() for part in request.headers.get("accept", "").split(",")}


def _allows(accepted: set[str], media: str) -> bool:
    return media in accepted or "*/*" in accepted or f"{media.split('/')[0]}/*" in accepted


def _with_full_accept(scope: Scope) -> Scope:
    """Copy of ``scope`` whose Accept header lists both JSON and SSE.

    Used once the client's Accept header has been checked here and the
    session's response mode chosen; the transport then sees both types.
    """
    headers = [(k, v) for k, v in scope["headers"] if k.lower() != b"accept"]
    headers.append((b"accept", f"{JSON_MEDIA}, {SSE_MEDIA}".encode()))
    return {**scope, "headers": headers}


def _is_initialize(body: bytes) -> bool:
    try:
        message = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return False
    return isinstance(message, dict) and message.get("method") == "initialize"


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """``receive`` that yields the already-read body once, then defers to the original."""
    replayed = False

    async def wrapped() -> dict[str, Any]:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return wrapped


class ASGIEndpoint:
    """Adapts a bound ``(scope, receive, send)`` coroutine into a raw ASGI route endpoint."""

    def __init__(self, handler: ASGIHandler):
        self.handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.handler(scope, receive, send)


# =============================================================================
# Session multiplexer
# =============================================================================

class SessionMultiplexer:
    """Routes HTTP requests to per-session protocol servers.

    Streamable HTTP sessions run in a task group owned by :meth:`run` so
    they outlive the request that created them. They end on ``DELETE``,
    when their server loop stops, or after ``idle_timeout`` seconds without
    a request. SSE sessions live exactly as long as their event-stream
    connection.
    """

    def __init__(self, server_factory: ServerFactory, idle_timeout: float = 0):
        self.server_factory = server_factory
        self.idle_timeout = idle_timeout
        self.streamable = SessionTable(STREAMABLE)
        self.sse = SessionTable(SSE)
        self._task_group: Optional[TaskGroup] = None

    @asynccontextmanager
    async def run(self):
        """Own the task group that runs streamable HTTP sessions and the idle reaper."""
        if self._task_group is not None:
            raise RuntimeError("SessionMultiplexer is already running")
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            if self.idle_timeout:
                tg.start_soon(self._reap_forever)
            logger.info("Session multiplexer started")
            try:
                yield
            finally:
                tg.cancel_scope.cancel()
                self._task_group = None
                logger.info(f"Session multiplexer stopped ({len(self.streamable)} streamable sessions dropped)")

    # -------------------------------------------------------------------------
    # Streamable HTTP
    # -------------------------------------------------------------------------

    async def handle_streamable(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        logger.info(f"{request.method} {request.url.path}")

        accepted = _accepted(request)
        if request.method == "POST":
            if not (_allows(accepted, JSON_MEDIA) or _allows(accepted, SSE_MEDIA)):
                response = _jsonrpc_error(
                    406, -32000, "Not Acceptable: Client must accept application/json or text/event-stream"
                )
                await response(scope, receive, send)
                return
            scope = _with_full_accept(scope)

        token = request.headers.get(MCP_SESSION_ID_HEADER)
        if token:
            session = self.streamable.get(token)
            if session is None:
                logger.warning(f"Request for unknown session: {token}")
                response = _jsonrpc_error(400, -32001, f"Invalid or expired session ID: {token}. Please re-initialize.")
                await response(scope, receive, send)
                return
            session.touch()
            try:
                await session.transport.handle_request(scope, receive, send)
            finally:
                session.touch()
            if session.transport.is_terminated:
                self.streamable.discard(token)
            return

        if request.method != "POST":
            response = _jsonrpc_error(400, -32000, "Bad Request: No valid session ID provided")
            await response(scope, receive, send)
            return

        body = await request.body()
        if not _is_initialize(body):
            response = _jsonrpc_error(400, -32000, "Bad Request: No valid session ID provided")
            await response(scope, receive, send)
            return

        session = await self._start_streamable_session(json_response=_allows(accepted, JSON_MEDIA))
        status: dict[str, int] = {}

        async def capture_status(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            await send(message)

        await session.transport.handle_request(scope, _replay_body(body, receive), capture_status)
        if not 200 <= status.get("code", 500) < 300:
            logger.warning(f"Initialize for session {session.token} rejected ({status.get('code')}), closing it")
            await self._close_session(session)

    async def _start_streamable_session(self, json_response: bool = True) -> LiveSession:
        """Create a transport under a fresh token and start its server.

        The session is in the table before this returns, so the token is
        routable as soon as the client sees it. ``json_response`` picks
        plain JSON replies; otherwise each reply is a short SSE stream.
        """
        if self._task_group is None:
            raise RuntimeError("SessionMultiplexer.run() must be entered before handling requests")

        token = new_session_token()
        transport = StreamableHTTPServerTransport(
            mcp_session_id=token,
            is_json_response_enabled=json_response,
        )
        server = self.server_factory()
        session = LiveSession(token=token, kind=STREAMABLE, server=server, transport=transport)

        async def run_session(*, task_status=anyio.TASK_STATUS_IGNORED):
            async with transport.connect() as (read_stream, write_stream):
                self.streamable.add(session)
                task_status.started()
                try:
                    await serve_session(server, read_stream, write_stream, stateless=False)
                except Exception as e:
                    logger.error(f"Session {token} crashed: {type(e).__name__}: {e}")
                finally:
                    self.streamable.discard(token)

        await self._task_group.start(run_session)
        logger.info(f"Streamable session {token} uses {'JSON' if json_response else 'SSE'} responses")
        return session

    async def _close_session(self, session: LiveSession) -> None:
        self.streamable.discard(session.token)
        await session.transport.terminate()

    async def reap_idle(self, now: Optional[float] = None) -> int:
        """Close streamable sessions idle for longer than ``idle_timeout``; returns how many."""
        if not self.idle_timeout:
            return 0
        expired = self.streamable.idle(self.idle_timeout, now)
        for session in expired:
            logger.info(f"Session {session.token} idle for {session.idle_for(now):.0f}s, closing it")
            await self._close_session(session)
        return len(expired)

    async def _reap_forever(self) -> None:
        interval = min(self.idle_timeout / 2, REAP_INTERVAL_MAX)
        while True:
            await anyio.sleep(interval)
            await self.reap_idle()

    # -------------------------------------------------------------------------
    # SSE
    # -------------------------------------------------------------------------

    async def handle_sse(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Open an event stream and serve one session over it until it closes."""
        token = new_session_token()
        server = self.server_factory()

        read_writer, read_stream = anyio.create_memory_object_stream[SessionMessage | Exception](0)
        write_stream, write_reader = anyio.create_memory_object_stream[SessionMessage](0)
        event_send, event_receive = anyio.create_memory_object_stream[dict[str, Any]](0)

        async def sse_writer():
            async with event_send, write_reader:
                await event_send.send({"event": "endpoint", "data": f"{MESSAGES_PATH}?sessionId={token}"})
                async for session_message in write_reader:
                    await event_send.send({
                        "event": "message",
                        "data": session_message.message.model_dump_json(by_alias=True, exclude_none=True),
                    })

        self.sse.add(LiveSession(token=token, kind=SSE, server=server, transport=read_writer))
        try:
            async with read_writer, read_stream, write_stream, anyio.create_task_group() as tg:
                response = EventSourceResponse(content=event_receive, data_sender_callable=sse_writer)

                async def stream_response():
                    await response(scope, receive, send)
                    tg.cancel_scope.cancel()

                tg.start_soon(stream_response)
                await serve_session(server, read_stream, write_stream)
        except Exception as e:
            logger.error(f"SSE session {token} failed: {type(e).__name__}: {e}")
        finally:
            self.sse.discard(token)

    async def handle_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Feed one client message into the SSE session named by ``sessionId``."""
        request = Request(scope, receive)
        token = request.query_params.get("sessionId")

        if not token:
            response = JSONResponse({"error": "Missing sessionId parameter", "status": 400}, status_code=400)
            await response(scope, receive, send)
            return

        session = self.sse.get(token)
        if session is None:
            response = JSONResponse(
                {"error": f"No active SSE connection found for session ID: {token}", "status": 404},
                status_code=404,
            )
            await response(scope, receive, send)
            return

        body = await request.body()
        try:
            message = types.JSONRPCMessage.model_validate_json(body)
        except ValidationError as e:
            logger.warning(f"Invalid message for SSE session {token}: {e}")
            response = JSONResponse({"error": "Could not parse message", "status": 400}, status_code=400)
            await response(scope, receive, send)
            return

        try:
            await session.transport.send(SessionMessage(message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            self.sse.discard(token)
            response = JSONResponse(
                {"error": f"No active SSE connection found for session ID: {token}", "status": 404},
                status_code=404,
            )
            await response(scope, receive, send)
            return

        await Response("Accepted", status_code=202)(scope, receive, send)

    def stats(self) -> dict[str, int]:
        return {"streamable": len(self.streamable), "sse": len(self.sse)}


# =============================================================================
# Application
# =============================================================================

def create_app(context: AppContext) -> Starlette:
    """Create the Starlette ASGI application."""
    mux = SessionMultiplexer(lambda: create_server(context), idle_timeout=context.settings.session_idle_timeout)

    @asynccontextmanager
    async def lifespan(app):
        """Application lifespan: startup/shutdown."""
        logger.info("Grocy MCP HTTP Server starting...")
        async with mux.run():
            yield
        logger.info("Grocy MCP HTTP Server shut down.")

    async def info(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "ok",
            "service": SERVER_NAME,
            "version": __version__,
            "message": "MCP server is running",
            "endpoints": ENDPOINTS,
            "sessions": mux.stats(),
        })

    streamable = ASGIEndpoint(mux.handle_streamable)
    sse = ASGIEndpoint(mux.handle_sse)
    messages = ASGIEndpoint(mux.handle_message)

    routes = [
        Route("/", info, methods=["GET"]),
        Route("/health", info, methods=["GET"]),
        Route("/mcp", streamable, methods=["GET", "POST", "DELETE"]),
        Route("/mcp/sse", sse, methods=["GET"]),
        Route("/sse", sse, methods=["GET"]),
        Route(MESSAGES_PATH, messages, methods=["POST"]),
        Route("/messages", messages, methods=["POST"]),
    ]

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Mcp-Session-Id", "Authorization"],
            expose_headers=["Mcp-Session-Id", "Content-Type"],
        ),
    ]

    app = Starlette(
        routes=routes,
        middleware=middleware,
        lifespan=lifespan,
    )
    app.state.multiplexer = mux

    return app


async def serve(context: AppContext) -> None:
    """Serve the HTTP app on the configured host and port inside a running event loop.

    uvicorn's own logging config is skipped so its records go to stderr
    through the root logger; stdout may be carrying the stdio transport.
    """
    settings = context.settings
    config = uvicorn.Config(
        create_app(context),
        host=settings.http_host,
        port=settings.http_port,
        log_config=None,
        log_level="info",
    )
    logger.info(f"HTTP transport listening on http://{settings.http_host}:{settings.http_port}/mcp")
    await uvicorn.Server(config).serve()


def main():
    """Main entry point for the HTTP-only server."""
    context = load_context()
    settings = context.settings

    app = create_app(context)
    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level="info")


if __name__ == "__main__":
    main()
