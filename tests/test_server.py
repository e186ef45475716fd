"""Tests for the ASGI transport boundary."""

import json
from datetime import date

import pytest
from pydantic import BaseModel

from smartrpc import RPCError, create_router, procedure
from smartrpc.server import DEFAULT_SERVER_OPTIONS, ResponseSink, RPCApp, serve


class EchoIn(BaseModel):
    message: str


class EchoOut(BaseModel):
    result: str


class Event(BaseModel):
    day: date


def build_router():
    async def require_token(ctx, input, res, call_next):
        if ctx.get("token") != "secret":
            raise RPCError(401, "Authentication required", {"hint": "send a token"})
        return await call_next()

    def create(ctx, data, res):
        res.status(201)
        res.set_header("X-Created", "yes")
        return {"id": 1}

    def explode(ctx, data):
        raise KeyError("boom")

    def teapot(ctx, data):
        raise RPCError(9999, "odd")

    secured = create_router({"create": procedure(create)}).use(require_token)
    return create_router(
        {
            "echo": procedure()
            .input(EchoIn)
            .output(EchoOut)
            .implement(lambda ctx, data: {"result": "Echo: " + data.message}),
            "event": procedure(lambda ctx, data: Event(day=date(2025, 1, 2))),
            "explode": procedure(explode),
            "weird": procedure(lambda ctx, data: object()),
            "teapot": procedure(teapot),
            "users": create_router({"secured": secured}),
        }
    )


async def request(app, path, body=None, method="POST", chunks=None):
    if chunks is None:
        raw = b"" if body is None else (body if isinstance(body, bytes) else json.dumps(body).encode())
        chunks = [raw]
    incoming = [
        {"type": "http.request", "body": chunk, "more_body": index < len(chunks) - 1}
        for index, chunk in enumerate(chunks)
    ]
    messages = []

    async def receive():
        return incoming.pop(0)

    async def send(message):
        messages.append(message)

    scope = {"type": "http", "method": method, "path": path, "headers": []}
    await app(scope, receive, send)
    start, body_message = messages
    headers = {k.decode(): v.decode() for k, v in start["headers"]}
    return start["status"], headers, json.loads(body_message["body"])


@pytest.fixture
def app():
    return RPCApp(build_router())


@pytest.mark.asyncio
async def test_echo_over_http(app):
    status, headers, document = await request(
        app, "/rpc/echo", {"input": {"message": "Hello World"}}
    )
    assert status == 200
    assert headers["content-type"] == "application/json"
    assert int(headers["content-length"]) > 0
    assert document == {"result": {"result": "Echo: Hello World"}}


@pytest.mark.asyncio
async def test_body_split_across_messages(app):
    raw = json.dumps({"input": {"message": "chunked"}}).encode()
    status, _, document = await request(app, "/rpc/echo", chunks=[raw[:10], raw[10:]])
    assert status == 200
    assert document["result"]["result"] == "Echo: chunked"


@pytest.mark.asyncio
async def test_nested_path_context_status_and_headers(app):
    status, headers, document = await request(
        app, "/rpc/users/secured/create", {"input": {}, "context": {"token": "secret"}}
    )
    assert status == 201
    assert headers["x-created"] == "yes"
    assert document == {"result": {"id": 1}}


@pytest.mark.asyncio
async def test_rpc_error_from_middleware(app):
    status, _, document = await request(app, "/rpc/users/secured/create", {"input": {}})
    assert status == 401
    assert document == {
        "error": {"code": 401, "message": "Authentication required", "payload": {"hint": "send a token"}}
    }


@pytest.mark.asyncio
async def test_unknown_route_is_404(app):
    status, _, document = await request(app, "/rpc/nope", {})
    assert status == 404
    assert document["error"]["code"] == 404
    assert document["error"]["message"] == "Route 'nope' not found"


@pytest.mark.asyncio
async def test_trailing_segments_are_400(app):
    status, _, document = await request(app, "/rpc/echo/more", {"input": {"message": "x"}})
    assert status == 400
    assert document["error"]["message"] == "Route 'echo.more' is not callable"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [("GET", "/rpc/echo"), ("PUT", "/rpc/echo"), ("POST", "/api/echo"), ("POST", "/rpc")],
)
async def test_wrong_method_or_prefix_is_404(app, method, path):
    status, _, document = await request(app, path, {}, method=method)
    assert status == 404
    assert document == {"error": {"code": 404, "message": "Not Found", "payload": None}}


@pytest.mark.asyncio
async def test_validation_failure_is_400_with_details(app):
    status, _, document = await request(app, "/rpc/echo", {"input": {"message": 5}})
    assert status == 400
    assert document["error"]["code"] == 400
    assert document["error"]["message"] == "Validation failed"
    assert document["error"]["payload"][0]["loc"] == ["message"]


@pytest.mark.asyncio
async def test_missing_body_validates_none_input(app):
    status, _, document = await request(app, "/rpc/echo")
    assert status == 400
    assert document["error"]["message"] == "Validation failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [b"{not json", b"[1, 2]"])
async def test_malformed_body_is_400(app, raw):
    status, _, document = await request(app, "/rpc/echo", raw)
    assert status == 400
    assert document["error"]["message"] == "Invalid JSON body"


@pytest.mark.asyncio
async def test_unexpected_exception_is_500_and_logged(app, caplog):
    with caplog.at_level("ERROR", logger="smartrpc.server"):
        status, _, document = await request(app, "/rpc/explode", {})
    assert status == 500
    assert document == {"error": {"code": 500, "message": "Internal error", "payload": None}}
    assert "explode" in caplog.text


@pytest.mark.asyncio
async def test_unencodable_result_is_500(app):
    status, _, document = await request(app, "/rpc/weird", {})
    assert status == 500
    assert document["error"]["message"] == "Internal error"


@pytest.mark.asyncio
async def test_models_and_dates_are_serialized(app):
    status, _, document = await request(app, "/rpc/event", {})
    assert status == 200
    assert document == {"result": {"day": "2025-01-02"}}


@pytest.mark.asyncio
async def test_out_of_range_error_code_maps_to_http_500(app):
    status, _, document = await request(app, "/rpc/teapot", {})
    assert status == 500
    assert document["error"]["code"] == 9999


@pytest.mark.asyncio
async def test_lifespan_is_acknowledged(app):
    incoming = [{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}]
    sent = []

    async def receive():
        return incoming.pop(0)

    async def send(message):
        sent.append(message["type"])

    await app({"type": "lifespan"}, receive, send)
    assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]


@pytest.mark.asyncio
async def test_websocket_scope_rejected(app):
    with pytest.raises(RuntimeError):
        await app({"type": "websocket"}, None, None)


def test_app_requires_router():
    with pytest.raises(TypeError):
        RPCApp(object())


def test_custom_prefix_normalized():
    assert RPCApp(create_router({}), prefix="api/v1/").prefix == "/api/v1"


def test_response_sink_replaces_headers_case_insensitively():
    sink = ResponseSink()
    sink.set_header("X-Id", "1")
    sink.set_header("x-id", "2")
    sink.set_header("X-Other", 3)
    assert sink.headers == [("x-id", "2"), ("X-Other", "3")]
    assert sink.status_code is None
    sink.status(204)
    assert sink.status_code == 204


def test_serve_runs_uvicorn_with_merged_options(monkeypatch):
    import uvicorn

    captured = {}

    def fake_run(app, **kwargs):
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr(uvicorn, "run", fake_run)
    router = create_router({})
    serve(router, port=8123, prefix="/api")

    assert isinstance(captured["app"], RPCApp)
    assert captured["app"].router is router
    assert captured["app"].prefix == "/api"
    assert captured["port"] == 8123
    assert captured["host"] == DEFAULT_SERVER_OPTIONS["host"]
    assert captured["backlog"] == 511
    assert captured["log_level"] == "info"


@pytest.mark.asyncio
@pytest.mark.parametrize("prefix", ["/", ""])
async def test_root_prefix_mounts_router_at_root(prefix):
    app = RPCApp(build_router(), prefix=prefix)
    assert app.prefix == ""
    status, _, document = await request(app, "/echo", {"input": {"message": "hi"}})
    assert status == 200
    assert document == {"result": {"result": "Echo: hi"}}
    status, _, _ = await request(app, "/", {})
    assert status == 404


def test_response_sink_rejects_non_latin1_headers():
    sink = ResponseSink()
    with pytest.raises(ValueError):
        sink.set_header("X-Name", "名前")
    with pytest.raises(ValueError):
        sink.set_header("X-名前", "ok")
    assert sink.headers == []


@pytest.mark.asyncio
async def test_bad_header_from_handler_still_gets_a_response():
    def named(ctx, data, res):
        res.set_header("X-Name", "名前")
        return "done"

    app = RPCApp(create_router({"named": procedure(named)}))
    status, headers, document = await request(app, "/rpc/named", {})
    assert status == 500
    assert document["error"]["message"] == "Internal error"
    assert "x-name" not in headers
