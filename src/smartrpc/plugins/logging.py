"""Logging plugin (source of truth).

Responsibilities
----------------
- Wrap every call dispatched through the owning router and emit configurable
  messages:
  * ``before`` (default True): ``"{path} start"``
  * ``after`` (default True): ``"{path} end (<ms> ms)"`` with elapsed time
    in milliseconds and ``{elapsed:.2f}`` formatting.
  * ``{path}`` is the full dispatch path published in ``current_call``;
    per-route options match the path relative to the owning router.
- Sinks:
  * when ``print`` is true → always ``print(message)``;
  * else when ``log`` is true → ``logger.info(message)`` if the logger reports
    handlers via ``hasHandlers()``, otherwise ``print(message)`` to avoid drops;
  * else → no output.
- ``enabled`` gates the plugin entirely (default True).
- Use a provided ``logging.Logger`` (default ``logging.getLogger("smartrpc")``).

Configuration
-------------
- Accepted keys (router-level or per-route): ``enabled``, ``before``,
  ``after``, ``log``, ``print``, also as ``flags`` (e.g.
  ``"enabled:off,before:on,after:on,log:on,print:off"``).
- ``router.logging.configure(_target="users.*", before=False)`` scopes options
  to matching dispatch paths.

Exceptions propagate; the end message is skipped when an exception is raised.

Registration
------------
At module import, the plugin registers itself globally as ``"logging"``.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from smartrpc.core.context import current_call
from smartrpc.core.router import Router
from smartrpc.plugins._base_plugin import BasePlugin


class LoggingPlugin(BasePlugin):
    """Logs dispatched calls with timing."""

    plugin_code = "logging"
    plugin_description = "Logs procedure calls with timing"

    __slots__ = ("_logger",)

    def __init__(self, router, *, logger: Optional[logging.Logger] = None, **cfg):
        self._logger = logger or logging.getLogger("smartrpc")
        super().__init__(router, **cfg)

    def configure(
        self,
        enabled: bool = True,
        before: bool = True,
        after: bool = True,
        log: bool = True,
        print: bool = False,  # noqa: A002 - shadowing builtin intentionally
    ):
        """Configure logging plugin options.

        The wrapper added by __init_subclass__ handles writing to store.
        """
        pass

    def _emit(self, message: str, *, cfg: Optional[dict] = None):
        if cfg is None:
            return
        if cfg.get("print"):
            print(message)
            return
        if cfg.get("log"):
            logger = self._logger
            has_handlers = getattr(logger, "hasHandlers", None) or getattr(
                logger, "has_handlers", None
            )
            can_log = callable(has_handlers) and has_handlers()
            if can_log:
                logger.info(message)
            else:
                print(message)

    def middleware(self):
        """Wrap the rest of the chain with start/end logging and timing."""

        async def logged(ctx, input, res, call_next):  # noqa: A002
            info = current_call.get(None)
            path = info.path if info is not None else "<direct>"
            cfg = self._effective_config(self.current_path())
            if not cfg["enabled"]:
                return await call_next()
            if cfg["before"]:
                self._emit(f"{path} start", cfg=cfg)
            t0 = time.perf_counter()
            result = await call_next()
            elapsed = (time.perf_counter() - t0) * 1000
            if cfg["after"]:
                self._emit(f"{path} end ({elapsed:.2f} ms)", cfg=cfg)
            return result

        return logged

    def _effective_config(self, path: Optional[str]) -> dict:
        defaults = {"enabled": True, "before": True, "after": True, "log": True, "print": False}
        return defaults | self.configuration(path)


Router.register_plugin(LoggingPlugin)
