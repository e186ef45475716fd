"""Core runtime aggregator (source of truth).

Purpose: expose the runtime building blocks from a single module. No extra
logic beyond imports/exports.

Guarantees
----------
- Importing this module performs only imports; it does not register plugins or
  instantiate routers.
- Public API mirrors underlying modules 1:1:
  * ``base_router`` → ``BaseRouter`` (plugin-free engine)
  * ``router`` → ``Router`` (plugin-enabled), ``create_router``
  * ``procedure`` → ``Procedure``, ``procedure`` builder
  * ``errors`` → ``RPCError`` and the route errors
"""

from .base_router import BaseRouter
from .context import CallInfo, get_current_call
from .errors import InvalidRoute, RouteNotCallable, RouteNotFound, RPCError
from .procedure import Procedure, procedure
from .router import Router, create_router

__all__ = [
    "BaseRouter",
    "CallInfo",
    "InvalidRoute",
    "Procedure",
    "RouteNotCallable",
    "RouteNotFound",
    "Router",
    "RPCError",
    "create_router",
    "get_current_call",
    "procedure",
]
