"""HTTP MCP bridge served next to the desktop app.

``POST /mcp`` is forwarded to the FastMCP streamable HTTP session manager in
stateless JSON mode. ``GET /status`` reports the bridge snapshot, which is
also persisted to the shared status file whenever the bridge starts, stops or
is pointed at a new RA-H API base URL.
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastmcp import FastMCP
from fastmcp.server.http import set_http_request
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from mcp.types import INTERNAL_ERROR
from starlette.responses import Response

from ..services import status_file
from ..services.config import get_config
from ..services.rah_api_client import BaseUrlResolver, RahApiClient
from .server import create_server

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 4 * 1024 * 1024
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _rpc_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"jsonrpc": "2.0", "error": {"code": INTERNAL_ERROR, "message": message}},
    )


class McpBridgeServer:
    """Owns the HTTP bridge lifecycle: uvicorn server, MCP app and status file."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        api_client: Optional[RahApiClient] = None,
        status_path: Optional[Path] = None,
    ) -> None:
        config = get_config()
        self.host = host or config.mcp_host
        self.port = port or config.mcp_port
        self.status_path = status_path or config.mcp_status_path
        self.client = api_client or RahApiClient()
        self.mcp: FastMCP = create_server("http", api_client=self.client)
        self.app = self._build_app()

        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task] = None
        self._socket: Optional[socket.socket] = None

    @property
    def running(self) -> bool:
        return self._server is not None

    def status_snapshot(self) -> Dict[str, Any]:
        return status_file.enabled_snapshot(
            host=self.host,
            port=self.port,
            target_base_url=self.client.resolve_base_url(),
            last_error=self.client.last_error,
        )

    def persist_status(self) -> bool:
        snapshot = self.status_snapshot() if self.running else status_file.disabled_snapshot()
        return status_file.write_status(snapshot, path=self.status_path)

    def set_base_url_resolver(self, resolver: BaseUrlResolver) -> None:
        self.client.set_base_url_resolver(resolver)
        self.persist_status()

    def _build_app(self) -> FastAPI:
        bridge = self

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            manager = StreamableHTTPSessionManager(
                app=bridge.mcp._mcp_server,
                event_store=None,
                json_response=True,
                stateless=True,
            )
            app.state.session_manager = manager
            async with manager.run():
                yield

        app = FastAPI(title="RA-H MCP Bridge", lifespan=lifespan)

        @app.exception_handler(404)
        async def not_found_handler(request: Request, exc: Exception):
            return JSONResponse(status_code=404, content={"error": "Route not found"})

        @app.middleware("http")
        async def preflight(request: Request, call_next):
            if request.method == "OPTIONS":
                return Response(status_code=204, headers=CORS_HEADERS)
            return await call_next(request)

        @app.api_route("/status", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
        async def status() -> JSONResponse:
            return JSONResponse(
                content=bridge.status_snapshot(),
                headers={"Access-Control-Allow-Origin": "*"},
            )

        @app.post("/mcp")
        async def mcp_http_bridge(request: Request) -> Response:
            """Forward the JSON-RPC body to the FastMCP session manager."""
            raw = await _read_capped_body(request)
            if raw is None:
                return _rpc_error(413, "Invalid JSON body: request entity too large")
            if raw:
                try:
                    json.loads(raw)
                except ValueError as exc:
                    logger.warning("MCP request error", extra={"error": str(exc)})
                    return _rpc_error(500, f"Invalid JSON body: {exc}")

            return await _forward(request, raw)

        @app.api_route("/mcp", methods=["GET", "PUT", "DELETE", "PATCH"])
        async def mcp_wrong_method() -> JSONResponse:
            return JSONResponse(status_code=405, content={"error": "Use POST for MCP requests"})

        return app

    async def start(self) -> int:
        """Start serving; an already running bridge only refreshes its status."""
        if self.running:
            self.persist_status()
            return self.port

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            self.client.last_error = str(exc)
            logger.error(
                "MCP bridge failed to bind",
                extra={"host": self.host, "port": self.port, "error": str(exc)},
            )
            raise

        config = uvicorn.Config(self.app, log_level="warning", lifespan="on")
        self._socket = sock
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))
        while not self._server.started and not self._task.done():
            await asyncio.sleep(0.05)

        logger.info(
            "MCP server listening",
            extra={"url": f"http://{self.host}:{self.port}/mcp"},
        )
        self.persist_status()
        return self.port

    async def stop(self) -> None:
        server = self._server
        if server is None:
            return
        server.should_exit = True
        if self._task is not None:
            await self._task
        if self._socket is not None:
            self._socket.close()
        self._server = None
        self._task = None
        self._socket = None
        logger.info("MCP server stopped", extra={"port": self.port})
        self.persist_status()

    async def serve_forever(self) -> None:
        await self.start()
        try:
            if self._task is not None:
                await self._task
        finally:
            await self.stop()


async def _read_capped_body(request: Request) -> Optional[bytes]:
    """Read the request body, or return ``None`` once it exceeds ``MAX_BODY_BYTES``."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        logger.warning("MCP request rejected", extra={"body_bytes": int(declared)})
        return None

    chunks: List[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > MAX_BODY_BYTES:
            logger.warning("MCP request rejected", extra={"body_bytes": size})
            return None
        chunks.append(chunk)
    return b"".join(chunks)


async def _forward(request: Request, raw: bytes) -> Response:
    manager: StreamableHTTPSessionManager = request.app.state.session_manager
    messages: List[Dict[str, Any]] = []
    delivered = False

    async def receive():
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": raw, "more_body": False}
        return await request.receive()

    async def send(message):
        messages.append(message)

    try:
        with set_http_request(request):
            await manager.handle_request(request.scope, receive, send)
    except Exception as exc:
        logger.exception("MCP request error", extra={"error": str(exc)})
        return _rpc_error(500, "MCP transport failure")

    status = 200
    headers: Dict[str, str] = {}
    body = b""
    for message in messages:
        if message["type"] == "http.response.start":
            status = message.get("status", 200)
            headers = {key.decode(): value.decode() for key, value in message.get("headers", [])}
        elif message["type"] == "http.response.body":
            body += message.get("body", b"")
    headers.pop("content-length", None)
    return Response(content=body, status_code=status, headers=headers)


def main() -> None:
    """Console entry point for ``rah-mcp-http``."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    bridge = McpBridgeServer()
    try:
        asyncio.run(bridge.serve_forever())
    except OSError as exc:
        raise SystemExit(f"Failed to start RA-H MCP server: {exc}") from exc


if __name__ == "__main__":
    main()


__all__ = ["MAX_BODY_BYTES", "McpBridgeServer", "main"]
