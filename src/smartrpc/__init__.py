"""SmartRPC public API surface (source of truth).

Recreate the module with these rules:
- Public exports: ``Router``, ``create_router``, ``Procedure``, ``procedure``,
  ``RPCError`` and the route errors, ``get_current_call``.
- Plugin registration: import built-in plugins (``logging``, ``errors``) for
  their side effect of calling ``Router.register_plugin(<class>)``.
  Imports are done lazily via ``import_module`` to avoid cycles.

Constraints
-----------
- Import must stay lightweight: no router instantiation and no server import
  (``smartrpc.server`` pulls in the transport stack on demand).
- Version string lives here as ``__version__`` and must remain available for
  packaging tools.
"""

from importlib import import_module

__version__ = "0.1.0"

from .core import (
    InvalidRoute,
    Procedure,
    RouteNotCallable,
    RouteNotFound,
    Router,
    RPCError,
    create_router,
    get_current_call,
    procedure,
)

# Import plugins to trigger auto-registration (lazy to avoid cycles)
for _plugin in ("logging", "errors"):
    import_module(f"{__name__}.plugins.{_plugin}")
del _plugin

__all__ = [
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
