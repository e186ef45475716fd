"""HTTP transport boundary (source of truth).

Maps HTTP requests to ``Router.call`` and serializes the outcome as JSON.
Nothing here takes part in routing decisions; the router stays usable
without it.

RPCApp
------
``RPCApp(router, *, prefix="/rpc")`` is an ASGI 3 application.

- ``lifespan`` scopes are acknowledged (startup/shutdown complete).
- Requests other than ``POST <prefix>/<segment>/...`` are answered 404 with
  ``{"error": {"code": 404, "message": "Not Found", "payload": null}}``
  before reaching the router.
- Path segments after the prefix are joined with ``.`` into the dispatch path.
- The body is JSON ``{"input": ..., "context": ...}``. An empty body is ``{}``;
  a missing or null ``context`` becomes ``{}``. Malformed JSON, or a body that
  is not an object, is a 400 ``Invalid JSON body``.
- Success: status set through the sink (default 200), body
  ``{"result": <value>}``. Values are encoded with
  ``pydantic_core.to_jsonable_python`` so models and dates serialize.
- ``RPCError``: status is the error code (500 when the code is not a valid
  HTTP status), body ``{"error": {"code", "message", "payload"}}``.
- ``pydantic.ValidationError``: 400 ``Validation failed`` with the error list
  as payload. Schema mismatches are client errors.
- Anything else is logged with its traceback and answered 500
  ``Internal error``.
- Headers set through the sink are sent with every response, including error
  responses. ``ResponseSink.set_header`` rejects names or values that are not
  latin-1 encodable with ``ValueError``, so a bad header fails the call (500)
  instead of the response.
- ``prefix="/"`` (or ``""``) mounts the router at the root: ``POST /a/b``.

serve
-----
``serve(router, **options)`` runs ``RPCApp`` under uvicorn. Options are merged
with ``SmartOptions`` over ``DEFAULT_SERVER_OPTIONS``: ``host``
("localhost"), ``port`` (3000), ``backlog`` (511), ``prefix`` ("/rpc"),
``log_level`` ("info").
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, MutableMapping, Optional, Tuple

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python
from smartseeds import SmartOptions
from smartseeds.typeutils import safe_is_instance

from smartrpc.core.errors import RPCError
from smartrpc.core.schema import validation_errors

__all__ = ["DEFAULT_SERVER_OPTIONS", "ResponseSink", "RPCApp", "serve"]

logger = logging.getLogger("smartrpc.server")

Scope = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[MutableMapping[str, Any]]]
Send = Callable[[MutableMapping[str, Any]], Awaitable[None]]

DEFAULT_SERVER_OPTIONS: Dict[str, Any] = {
    "host": "localhost",
    "port": 3000,
    "backlog": 511,
    "prefix": "/rpc",
    "log_level": "info",
}

_NOT_FOUND = {"error": {"code": 404, "message": "Not Found", "payload": None}}


class ResponseSink:
    """Collects headers and status set by middleware and handlers."""

    __slots__ = ("headers", "status_code")

    def __init__(self) -> None:
        self.headers: List[Tuple[str, str]] = []
        self.status_code: Optional[int] = None

    def set_header(self, key: str, value: str) -> None:
        value = str(value)
        try:
            key.encode("latin-1")
            value.encode("latin-1")
        except UnicodeEncodeError as exc:
            raise ValueError(f"Header {key!r} must be latin-1 encodable") from exc
        lowered = key.lower()
        self.headers = [(k, v) for k, v in self.headers if k.lower() != lowered]
        self.headers.append((key, value))

    def status(self, code: int) -> None:
        self.status_code = int(code)


class RPCApp:
    """ASGI application dispatching ``POST <prefix>/a/b`` to ``router.call``."""

    def __init__(self, router: Any, *, prefix: str = "/rpc") -> None:
        if not safe_is_instance(router, "smartrpc.core.base_router.BaseRouter"):
            raise TypeError(f"RPCApp requires a Router, got {type(router).__name__}")
        self.router = router
        stripped = prefix.strip("/")
        self.prefix = "/" + stripped if stripped else ""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope["type"] != "http":
            raise RuntimeError(f"Unsupported ASGI scope type: {scope['type']!r}")

        path = scope.get("path", "")
        if scope.get("method") != "POST" or not path.startswith(self.prefix + "/"):
            await _send_json(send, 404, _NOT_FOUND)
            return

        dispatch_path = ".".join(path[len(self.prefix) + 1 :].split("/"))
        body = await _read_body(receive)
        sink = ResponseSink()
        status, document = await self._dispatch(dispatch_path, body, sink)
        try:
            encoded = _encode(document)
        except (TypeError, ValueError, PydanticSerializationError):
            logger.exception("Cannot encode result of %s", dispatch_path)
            status, encoded = 500, _encode(_error_document(500, "Internal error"))
        await _send(send, status, encoded, sink.headers)

    async def _dispatch(
        self, dispatch_path: str, body: bytes, sink: ResponseSink
    ) -> Tuple[int, Dict[str, Any]]:
        try:
            request = _parse_body(body)
            context = request.get("context")
            if context is None:
                context = {}
            result = await self.router.call(context, dispatch_path, request.get("input"), sink)
        except RPCError as exc:
            logger.debug("RPC error on %s: %s (%s)", dispatch_path, exc.message, exc.code)
            return _http_status(exc.code), {"error": exc.to_dict()}
        except ValidationError as exc:
            return 400, _error_document(400, "Validation failed", validation_errors(exc))
        except Exception:
            logger.exception("Unhandled error while dispatching %s", dispatch_path)
            return 500, _error_document(500, "Internal error")
        return sink.status_code or 200, {"result": result}

    async def _lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return


def _parse_body(body: bytes) -> Dict[str, Any]:
    if not body.strip():
        return {}
    try:
        document = json.loads(body)
    except ValueError as exc:
        raise RPCError(400, "Invalid JSON body") from exc
    if not isinstance(document, dict):
        raise RPCError(400, "Invalid JSON body")
    return document


def _error_document(code: int, message: str, payload: Any = None) -> Dict[str, Any]:
    return {"error": {"code": code, "message": message, "payload": payload}}


def _http_status(code: int) -> int:
    return code if 100 <= code <= 599 else 500


def _encode(document: Dict[str, Any]) -> bytes:
    return json.dumps(document, default=to_jsonable_python).encode("utf-8")


async def _read_body(receive: Receive) -> bytes:
    chunks: List[bytes] = []
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            break
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


async def _send_json(send: Send, status: int, document: Dict[str, Any]) -> None:
    await _send(send, status, _encode(document), [])


async def _send(send: Send, status: int, body: bytes, headers: List[Tuple[str, str]]) -> None:
    raw_headers = [(b"content-type", b"application/json")]
    for name, value in headers:
        if name.lower() in ("content-type", "content-length"):
            continue
        raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))
    raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))
    await send({"type": "http.response.start", "status": status, "headers": raw_headers})
    await send({"type": "http.response.body", "body": body})


def serve(router: Any, **options: Any) -> None:
    """Run ``router`` behind ``RPCApp`` with uvicorn (blocking)."""
    import uvicorn

    opts = SmartOptions(options, defaults=DEFAULT_SERVER_OPTIONS)
    host = getattr(opts, "host")
    port = getattr(opts, "port")
    prefix = getattr(opts, "prefix")
    app = RPCApp(router, prefix=prefix)
    logger.info("RPC server running at http://%s:%s%s", host, port, app.prefix)
    uvicorn.run(
        app,
        host=host,
        port=port,
        backlog=getattr(opts, "backlog"),
        log_level=getattr(opts, "log_level"),
    )
