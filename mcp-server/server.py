from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastmcp import FastMCP
from starlette.exceptions import HTTPException as StarletteHTTPException

from catalog import CatalogService, StoreBackend
from config import ConfigError, Settings, load_settings
from db import Database
from logging_config import configure_logging
from protocol import STREAM_INSTRUCTIONS, RpcDispatcher, sse_message
from store import CatalogStore
from tools import AppContext, ToolRegistry, build_registry, register_tools

_LOGGER = logging.getLogger("uai.mcp.server")

MCP_STREAM_PATH = "/mcp/stream"
PUBLIC_PATHS = frozenset({"/health", "/.well-known/mcp", "/test"})
AVAILABLE_ENDPOINTS = ["/", "/health", "/test", "/.well-known/mcp", MCP_STREAM_PATH]
SELF_TEST_ARGUMENTS: Mapping[str, Any] = {"termo_busca": "coxinha", "limite": 3}
GRACEFUL_SHUTDOWN_SECONDS = 10


class MCPAcceptHeaderMiddleware:
    """Loosen Accept header handling for MCP endpoint probes.

    Some MCP registries/probers send `Accept: */*` or omit `Accept` while
    validating URL reachability. Streamable HTTP expects explicit media types.
    """

    def __init__(self, app: Any, path: str = MCP_STREAM_PATH):
        self.app = app
        self.path = path

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope.get("type") == "http" and scope.get("path") == self.path:
            headers = list(scope.get("headers", []))
            accept = ""
            for key, value in headers:
                if key == b"accept":
                    accept = value.decode("latin-1")
                    break
            if not accept or accept.strip() == "*/*":
                rewritten = [(k, v) for k, v in headers if k != b"accept"]
                rewritten.append((b"accept", b"application/json, text/event-stream"))
                scope = dict(scope)
                scope["headers"] = rewritten
        await self.app(scope, receive, send)


async def stream_events(greeting: Mapping[str, Any], keepalive_interval: float) -> AsyncIterator[str]:
    """SSE body: greeting first, then a heartbeat comment per interval.

    Starlette cancels the generator when the client disconnects, which is
    what stops the heartbeat timer.
    """

    try:
        yield ":connected\n\n"
        yield sse_message(greeting)
        while True:
            await asyncio.sleep(keepalive_interval)
            yield ":heartbeat\n\n"
    finally:
        _LOGGER.info("SSE connection closed")


def bearer_token_matches(header: str, expected: str) -> bool:
    if not header.startswith("Bearer "):
        return False
    return secrets.compare_digest(header[len("Bearer ") :].encode(), expected.encode())


async def _startup_self_test(registry: ToolRegistry, delay: float) -> None:
    await asyncio.sleep(delay)
    _LOGGER.info("running startup self-test")
    try:
        result = await registry.call("buscar_produtos", SELF_TEST_ARGUMENTS)
    except Exception:
        _LOGGER.exception("startup self-test crashed")
        return
    if result.get("sucesso"):
        _LOGGER.info("startup self-test passed", extra={"produtos_encontrados": result.get("total")})
    else:
        _LOGGER.warning("startup self-test failed", extra={"erro": result.get("erro")})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "Not Found", "available_endpoints": AVAILABLE_ENDPOINTS},
    )


def create_app(settings: Settings, store: StoreBackend | None = None) -> FastAPI:
    """Wire the service together.

    `store` replaces the asyncpg-backed `CatalogStore`; when given, no pool is
    opened during the lifespan.
    """

    database: Database | None = None
    if store is None:
        database = Database(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
        store = CatalogStore(database)

    catalog = CatalogService(store, settings.cardapio_id, settings.cardapio_base_url)
    context = AppContext(settings=settings, catalog=catalog)
    registry = build_registry(context)
    dispatcher = RpcDispatcher(registry, settings)

    mcp = FastMCP(name=settings.service_name, instructions=STREAM_INSTRUCTIONS)
    register_tools(mcp, registry)
    mcp_streamable_app = mcp.http_app(path="/stream", transport="streamable-http")
    mcp_streamable_app.add_exception_handler(404, _not_found)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        # FastMCP streamable transport requires its own lifespan to initialize
        # the session manager task group. Run that lifespan alongside DB setup.
        async with mcp_streamable_app.lifespan(mcp_streamable_app):
            db_ready = database is None
            db_error = ""
            if database is not None:
                try:
                    await database.connect()
                    db_ready = True
                except Exception as exc:
                    db_error = str(exc)
                    _LOGGER.error("database connection failed", extra={"error": db_error})
            _app.state.db_ready = db_ready
            _app.state.db_error = db_error

            _LOGGER.info(
                "server online",
                extra={
                    "port": settings.port,
                    "version": settings.version,
                    "domain": settings.domain,
                    "tools": len(registry),
                    "auth_enabled": settings.auth_enabled,
                    "cardapio": catalog.menu_url(),
                },
            )
            self_test: asyncio.Task[None] | None = None
            if settings.startup_self_test:
                self_test = asyncio.create_task(_startup_self_test(registry, settings.startup_self_test_delay))
            try:
                yield
            finally:
                if self_test is not None and not self_test.done():
                    self_test.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await self_test
                if database is not None:
                    await database.close()
                _LOGGER.info("server closed")

    app = FastAPI(title="UAI Salgados MCP Server", version=settings.version, lifespan=lifespan)
    app.state.context = context
    app.state.registry = registry
    app.state.dispatcher = dispatcher

    if settings.auth_token:
        expected_token = settings.auth_token

        @app.middleware("http")
        async def require_bearer_token(request: Request, call_next):
            if request.url.path in PUBLIC_PATHS:
                return await call_next(request)
            if bearer_token_matches(request.headers.get("authorization", ""), expected_token):
                return await call_next(request)
            _LOGGER.warning("unauthorized request", extra={"path": request.url.path})
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    app.add_middleware(MCPAcceptHeaderMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code != 404:
            return await http_exception_handler(request, exc)
        return await _not_found(request, exc)

    @app.get("/health")
    async def health() -> JSONResponse:
        try:
            await catalog.ping()
        except Exception as exc:
            _LOGGER.error("health check failed", extra={"error": str(exc)})
            content = {"status": "unhealthy", "error": str(exc)}
            startup_error = getattr(app.state, "db_error", "")
            if startup_error:
                content["startup_error"] = startup_error
            return JSONResponse(status_code=500, content=content)

        return JSONResponse(
            content={
                "status": "healthy",
                "service": settings.service_name,
                "version": settings.version,
                "timestamp": _now(),
                "database": {"status": "connected", "host": settings.database_host},
                "tools_available": len(registry),
            }
        )

    @app.get("/test")
    async def run_self_test() -> dict[str, Any]:
        try:
            result = await registry.call("buscar_produtos", SELF_TEST_ARGUMENTS)
        except Exception as exc:
            _LOGGER.exception("test endpoint crashed")
            return {"status": "test_failed", "error": str(exc)}

        return {
            "status": "test_success",
            "timestamp": _now(),
            "test_busca_produtos": {
                "sucesso": result.get("sucesso"),
                "total_encontrados": result.get("total"),
                "tempo": result.get("tempo_execucao"),
            },
            "config": {
                "database_host": settings.database_host,
                "cardapio_id": settings.cardapio_id,
                "auth_enabled": settings.auth_enabled,
            },
        }

    @app.get("/.well-known/mcp")
    async def mcp_descriptor() -> dict[str, Any]:
        return {
            "protocol_version": dispatcher.handshake()["protocolVersion"],
            "server_info": dispatcher.server_info,
            "capabilities": dispatcher.capabilities,
            "endpoints": {
                "mcp": settings.public_url("/"),
                "mcp_streamable_http": settings.public_url(MCP_STREAM_PATH),
                "health": settings.public_url("/health"),
                "test": settings.public_url("/test"),
            },
            "tools_available": registry.names(),
            "authentication": {
                "required": settings.auth_enabled,
                "type": "bearer" if settings.auth_enabled else "none",
            },
        }

    @app.get("/")
    async def event_stream() -> StreamingResponse:
        _LOGGER.info("SSE connection opened")
        return StreamingResponse(
            stream_events(dispatcher.stream_greeting(), settings.keepalive_interval),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
        )

    @app.post("/")
    async def rpc(request: Request) -> JSONResponse:
        body = await request.body()
        return JSONResponse(content=await dispatcher.handle_body(body))

    app.mount("/mcp", mcp_streamable_app)
    return app


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        configure_logging(os.getenv("LOG_LEVEL", "INFO"))
        _LOGGER.error("invalid configuration", extra={"error": str(exc)})
        raise SystemExit(1) from exc

    configure_logging(settings.log_level)
    _LOGGER.info("starting UAI Salgados MCP server", extra={"version": settings.version})
    # uvicorn owns SIGTERM/SIGINT: stop accepting, drain, then run lifespan teardown.
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
        timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
    )


if __name__ == "__main__":
    main()


__all__ = ["create_app", "main", "stream_events", "bearer_token_matches", "MCPAcceptHeaderMiddleware"]
