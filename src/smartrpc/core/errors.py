"""Tagged RPC error model (source of truth).

Every dispatch-stage failure raised by SmartRPC is an :class:`RPCError`. The
class carries a numeric ``code``, a human readable ``message`` and an optional
``payload`` of arbitrary JSON-friendly data. Handlers and middleware raise the
same type to signal domain failures (``RPCError(401, "Authentication
required")``); the transport serializes it verbatim.

Route errors
------------
Three subclasses name the failures produced by ``Router.call``. They remain
plain ``RPCError`` instances for callers that only match the base class:

- ``RouteNotFound`` (404): no child matches the first unresolved segment.
- ``RouteNotCallable`` (400): segments remain after a procedure was reached.
- ``InvalidRoute`` (400): the matched child is neither leaf nor node.

Schema validation failures are deliberately *not* part of this hierarchy.
"""

from __future__ import annotations

from typing import Any, Dict

__all__ = ["RPCError", "RouteNotFound", "RouteNotCallable", "InvalidRoute"]


class RPCError(Exception):
    """Error with a numeric code, a message and an optional payload."""

    def __init__(self, code: int, message: str, payload: Any = None):
        super().__init__(message)
        self.code = int(code)
        self.message = message
        self.payload = payload

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "payload": self.payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code}, message={self.message!r})"


class RouteNotFound(RPCError):  # noqa: N818 - mirrors the HTTP meaning
    def __init__(self, path: str):
        super().__init__(404, f"Route '{path}' not found")


class RouteNotCallable(RPCError):  # noqa: N818
    def __init__(self, path: str):
        super().__init__(400, f"Route '{path}' is not callable")


class InvalidRoute(RPCError):  # noqa: N818
    def __init__(self, segment: str):
        super().__init__(400, f"Invalid route at '{segment}'")
