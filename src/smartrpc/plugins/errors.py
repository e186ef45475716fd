"""Error classification plugin.

Converts schema validation failures raised *inside* the middleware chain
(a handler or an inner middleware validating data on its own, a nested
procedure call, the output schema of a sub-dispatch) into a coded
``RPCError``, so the transport answers with the configured code and the
pydantic error list as payload instead of a generic failure.

Input and output validation of the procedure itself run outside the chain and
are never seen by this plugin; the transport classifies those.

Options: ``enabled`` (default True), ``code`` (default 400) and ``message``
(default ``"Validation failed"``), router-level or per route pattern.

Registers itself globally as ``"errors"``.
"""

from __future__ import annotations

from pydantic import ValidationError

from smartrpc.core.errors import RPCError
from smartrpc.core.router import Router
from smartrpc.core.schema import validation_errors
from smartrpc.plugins._base_plugin import BasePlugin


class ErrorsPlugin(BasePlugin):
    """Map validation failures raised by inner layers to ``RPCError``."""

    plugin_code = "errors"
    plugin_description = "Maps validation failures to coded RPC errors"

    def configure(
        self,
        enabled: bool = True,
        code: int = 400,
        message: str = "Validation failed",
    ):
        """The wrapper added by __init_subclass__ handles writing to store."""
        pass

    def middleware(self):
        async def classify(ctx, input, res, call_next):  # noqa: A002
            cfg = self.configuration(self.current_path())
            if not cfg.get("enabled", True):
                return await call_next()
            try:
                return await call_next()
            except ValidationError as exc:
                raise RPCError(
                    cfg.get("code", 400),
                    cfg.get("message", "Validation failed"),
                    validation_errors(exc),
                ) from exc

        return classify


Router.register_plugin(ErrorsPlugin)
