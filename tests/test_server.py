import asyncio
import dataclasses
import json

import pytest
from fastapi.testclient import TestClient

from conftest import FakeStore
from server import MCPAcceptHeaderMiddleware, bearer_token_matches, create_app, stream_events

TOKEN = "s3cr3t"


@pytest.fixture
def client(settings, store):
    return TestClient(create_app(settings, store=store))


@pytest.fixture
def secured_client(settings, store):
    return TestClient(create_app(dataclasses.replace(settings, auth_token=TOKEN), store=store))


def _rpc(method, params=None):
    return {"jsonrpc": "2.0", "id": 1, "method": method, "params": params or {}}


def test_health(client, store):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == {"status": "connected", "host": "db.example.com"}
    assert body["tools_available"] == 3
    assert store.called("ping") == [None]


def test_health_reports_database_failure(settings):
    client = TestClient(create_app(settings, store=FakeStore(failing=["ping"])))

    response = client.get("/health")

    assert response.status_code == 500
    assert response.json() == {"status": "unhealthy", "error": "ping unavailable"}


def test_health_reports_startup_connection_error(settings):
    app = create_app(settings, store=FakeStore(failing=["ping"]))
    app.state.db_error = "connection refused"

    body = TestClient(app).get("/health").json()

    assert body["status"] == "unhealthy"
    assert body["startup_error"] == "connection refused"


def test_rpc_tools_call(client):
    response = client.post("/", json=_rpc("tools/call", {"name": "buscar_produtos", "arguments": {"limite": 2}}))

    assert response.status_code == 200
    assert response.json()["result"]["total"] == 2


def test_rpc_errors_still_return_200(client):
    response = client.post("/", content=b"not json", headers={"content-type": "application/json"})

    assert response.status_code == 200
    assert response.json()["error"]["code"] == -32700


def test_self_test_endpoint(client, settings):
    body = client.get("/test").json()

    assert body["status"] == "test_success"
    assert body["test_busca_produtos"]["sucesso"] is True
    assert body["test_busca_produtos"]["total_encontrados"] == 1
    assert body["config"] == {
        "database_host": "db.example.com",
        "cardapio_id": settings.cardapio_id,
        "auth_enabled": False,
    }


def test_well_known_descriptor(client):
    body = client.get("/.well-known/mcp").json()

    assert body["protocol_version"] == "2025-03-26"
    assert body["tools_available"] == ["buscar_produtos", "listar_categorias", "informacoes_loja"]
    assert body["endpoints"]["mcp"] == "https://mcp.talkhub.me/"
    assert body["authentication"] == {"required": False, "type": "none"}


def test_unknown_path(client):
    response = client.get("/cardapio")

    assert response.status_code == 404
    assert response.json()["error"] == "Not Found"
    assert "/health" in response.json()["available_endpoints"]


def test_unknown_path_under_stream_mount(client):
    response = client.get("/mcp/foo")

    assert response.status_code == 404
    assert response.json()["available_endpoints"][-1] == "/mcp/stream"


def test_public_paths_skip_auth(secured_client):
    assert secured_client.get("/health").status_code == 200
    assert secured_client.get("/test").status_code == 200
    descriptor = secured_client.get("/.well-known/mcp").json()
    assert descriptor["authentication"] == {"required": True, "type": "bearer"}


def test_rpc_requires_bearer_token(secured_client):
    assert secured_client.post("/", json=_rpc("tools/list")).status_code == 401
    wrong = secured_client.post("/", json=_rpc("tools/list"), headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Unauthorized"}

    ok = secured_client.post("/", json=_rpc("tools/list"), headers={"Authorization": f"Bearer {TOKEN}"})
    assert ok.status_code == 200
    assert len(ok.json()["result"]["tools"]) == 3


def test_event_stream_requires_bearer_token(secured_client):
    assert secured_client.get("/").status_code == 401
    wrong = secured_client.get("/", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Unauthorized"}


def test_bearer_token_matches():
    assert bearer_token_matches(f"Bearer {TOKEN}", TOKEN)
    assert not bearer_token_matches(TOKEN, TOKEN)
    assert not bearer_token_matches(f"bearer {TOKEN}", TOKEN)
    assert not bearer_token_matches("Bearer ção", TOKEN)


@pytest.mark.asyncio
async def test_event_stream_greets_then_heartbeats():
    greeting = {"jsonrpc": "2.0", "method": "initialized", "params": {}}
    stream = stream_events(greeting, keepalive_interval=0.01)
    try:
        assert await stream.__anext__() == ":connected\n\n"
        frame = await stream.__anext__()
        assert frame.startswith("data: ") and frame.endswith("\n\n")
        assert json.loads(frame[len("data: ") :]) == greeting
        assert await stream.__anext__() == ":heartbeat\n\n"
        assert await stream.__anext__() == ":heartbeat\n\n"
    finally:
        await stream.aclose()


@pytest.mark.asyncio
async def test_accept_header_rewritten_for_wildcard_clients():
    seen = {}

    async def app(scope, receive, send):
        seen.update(dict(scope["headers"]))

    middleware = MCPAcceptHeaderMiddleware(app)
    await middleware({"type": "http", "path": "/mcp/stream", "headers": [(b"accept", b"*/*")]}, None, None)

    assert seen[b"accept"] == b"application/json, text/event-stream"


@pytest.mark.asyncio
async def test_event_stream_route(settings, store):
    app = create_app(settings, store=store)
    started = {}
    frames = []
    disconnected = asyncio.Event()

    async def receive():
        await disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.start":
            started.update(message)
        elif message["type"] == "http.response.body" and message.get("body"):
            frames.append(message["body"].decode())
            if len(frames) == 2:
                disconnected.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/",
        "raw_path": b"/",
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"testserver"), (b"accept", b"text/event-stream")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    await asyncio.wait_for(app(scope, receive, send), timeout=5)

    headers = dict(started["headers"])
    assert started["status"] == 200
    assert headers[b"content-type"].startswith(b"text/event-stream")
    assert headers[b"cache-control"] == b"no-cache"
    assert frames[0] == ":connected\n\n"
    greeting = json.loads(frames[1][len("data: ") :])
    assert greeting["method"] == "initialized"
    assert greeting["params"]["serverInfo"]["name"] == settings.service_name
