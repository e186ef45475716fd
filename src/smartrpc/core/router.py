"""Router with plugin pipeline (source of truth).

``Router`` extends ``BaseRouter`` with a global plugin registry, per-router
plugin instances and plugin state stored on the router instance. Dispatch
semantics are inherited unchanged: plugins contribute ordinary middleware.

Internal state
--------------
- ``_plugin_specs``: list of ``_PluginSpec`` (factory, kwargs copy).
- ``_plugins``: instantiated plugins in the order they were attached.
- ``_plugins_by_name``: name → plugin instance.
- ``_plugin_info``: per-plugin configuration and runtime state.

Global registry
---------------
``Router.register_plugin(plugin_class, name=None)`` validates that
``plugin_class`` is a ``BasePlugin`` subclass defining ``plugin_code``.
Re-registering a code with a different class raises ``ValueError`` unless an
explicit ``name`` is given (intentional replacement). ``available_plugins``
returns a shallow copy of the registry.

Attaching plugins
-----------------
``plug(plugin_name, **config)`` looks up the class by name (``ValueError``
listing available names if missing), instantiates it with ``config``, stores
it, and registers its middleware via ``use``. The registered layer skips the
plugin (calling ``next`` directly) while ``is_plugin_enabled`` is False.
``__getattr__`` exposes attached plugins by name or raises ``AttributeError``.

Runtime flags and data
----------------------
Stored under ``_plugin_info[plugin_code]`` using the reserved ``"--base--"``
bucket for router-level values and one bucket per route pattern, each with
``config`` and ``locals``. ``set_plugin_enabled`` / ``is_plugin_enabled`` and
``set_runtime_data`` / ``get_runtime_data`` read/write the ``locals`` part.
Route patterns are matched against the call path relative to this router
(``BasePlugin.current_path``), not the path given to the root router.

Router Invariants
-----------------
- Plugin order is deterministic and interleaves with ``use`` calls in
  registration order.
- Global registry changes do not mutate existing router instances.
- Plugin access via attribute never fails silently.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from functools import wraps
from typing import Any, Dict, List, Mapping, Optional, Type

from smartrpc.core.base_router import BaseRouter
from smartrpc.core.procedure import Middleware
from smartrpc.plugins._base_plugin import BASE_TARGET, BasePlugin

__all__ = ["Router", "create_router"]

_PLUGIN_REGISTRY: Dict[str, Type[BasePlugin]] = {}


@dataclass
class _PluginSpec:
    factory: Type[BasePlugin]
    kwargs: Dict[str, Any]

    def instantiate(self, router: "Router") -> BasePlugin:
        return self.factory(router, **self.kwargs)


class Router(BaseRouter):
    """Router with plugin registry/pipeline support."""

    __slots__ = BaseRouter.__slots__ + (
        "_plugin_specs",
        "_plugins",
        "_plugins_by_name",
        "_plugin_info",
    )

    def __init__(self, routes: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        self._plugin_specs: List[_PluginSpec] = []
        self._plugins: List[BasePlugin] = []
        self._plugins_by_name: Dict[str, BasePlugin] = {}
        self._plugin_info: Dict[str, Dict[str, Any]] = {}
        super().__init__(routes, **kwargs)

    # ------------------------------------------------------------------
    # Plugin registration
    # ------------------------------------------------------------------
    @classmethod
    def register_plugin(cls, plugin_class: Type[BasePlugin], name: Optional[str] = None) -> None:
        """Register a plugin class globally.

        Args:
            plugin_class: A BasePlugin subclass with plugin_code defined
            name: Optional override name. If provided, overwrites any existing
                  registration. If not provided, uses plugin_code and raises
                  if already registered with another class.
        """
        if not isinstance(plugin_class, type) or not issubclass(plugin_class, BasePlugin):
            raise TypeError("plugin_class must be a BasePlugin subclass")
        if not getattr(plugin_class, "plugin_code", None):
            raise ValueError(
                f"Plugin {plugin_class.__name__} not following standards: missing plugin_code"
            )
        code = name or plugin_class.plugin_code
        if name is None:
            existing = _PLUGIN_REGISTRY.get(code)
            if existing is not None and existing is not plugin_class:
                raise ValueError(f"Plugin '{code}' already registered")
        _PLUGIN_REGISTRY[code] = plugin_class

    @classmethod
    def available_plugins(cls) -> Dict[str, Type[BasePlugin]]:
        return dict(_PLUGIN_REGISTRY)

    def plug(self, plugin: str, **config: Any) -> "Router":
        """Attach a plugin by name (previously registered globally)."""
        if not isinstance(plugin, str):
            raise TypeError(
                f"Plugin must be referenced by name string, got {type(plugin).__name__}"
            )
        plugin_class = _PLUGIN_REGISTRY.get(plugin)
        if plugin_class is None:
            available = ", ".join(sorted(_PLUGIN_REGISTRY)) or "none"
            raise ValueError(
                f"Unknown plugin '{plugin}'. Register it first. Available plugins: {available}"
            )
        if plugin_class.plugin_code in self._plugins_by_name:
            raise ValueError(f"Plugin '{plugin}' already attached to router '{self.name}'")
        spec = _PluginSpec(plugin_class, dict(config))
        self._plugin_specs.append(spec)
        instance = spec.instantiate(self)
        self._plugins.append(instance)
        self._plugins_by_name[instance.name] = instance
        self.use(self._create_wrapper(instance, instance.middleware()))
        return self

    def iter_plugins(self) -> List[BasePlugin]:
        """Return attached plugin instances in application order."""
        return list(self._plugins)

    def get_config(self, plugin_name: str, path: Optional[str] = None) -> Dict[str, Any]:
        """Return plugin config (router-level + per-route overrides) for an attached plugin."""
        return self._require_plugin(plugin_name).configuration(path)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        plugin = self._plugins_by_name.get(name)
        if plugin is None:
            raise AttributeError(f"No plugin named '{name}' attached to router '{self.name}'")
        return plugin

    def _require_plugin(self, plugin_name: str) -> BasePlugin:
        plugin = self._plugins_by_name.get(plugin_name)
        if plugin is None:
            raise AttributeError(
                f"No plugin named '{plugin_name}' attached to router '{self.name}'"
            )
        return plugin

    def _get_plugin_bucket(self, plugin_name: str) -> Dict[str, Any]:
        self._require_plugin(plugin_name)
        bucket = self._plugin_info.setdefault(plugin_name, {})
        bucket.setdefault(BASE_TARGET, {"config": {}, "locals": {}})
        return bucket

    # ------------------------------------------------------------------
    # Runtime helpers (state stored on plugin_info)
    # ------------------------------------------------------------------
    def set_plugin_enabled(
        self, plugin_name: str, enabled: bool = True, path: str = BASE_TARGET
    ) -> None:
        bucket = self._get_plugin_bucket(plugin_name)
        entry = bucket.setdefault(path, {"config": {}, "locals": {}})
        entry.setdefault("locals", {})["enabled"] = bool(enabled)

    def is_plugin_enabled(self, plugin_name: str, path: Optional[str] = None) -> bool:
        bucket = self._get_plugin_bucket(plugin_name)
        enabled = bool(bucket[BASE_TARGET].get("locals", {}).get("enabled", True))
        if path:
            for pattern, slot in bucket.items():
                if pattern == BASE_TARGET:
                    continue
                slot_locals = slot.get("locals", {})
                if "enabled" in slot_locals and fnmatchcase(path, pattern):
                    enabled = bool(slot_locals["enabled"])
        return enabled

    def set_runtime_data(
        self, plugin_name: str, key: str, value: Any, path: str = BASE_TARGET
    ) -> None:
        bucket = self._get_plugin_bucket(plugin_name)
        entry = bucket.setdefault(path, {"config": {}, "locals": {}})
        entry.setdefault("locals", {})[key] = value

    def get_runtime_data(
        self, plugin_name: str, key: str, default: Any = None, path: str = BASE_TARGET
    ) -> Any:
        bucket = self._get_plugin_bucket(plugin_name)
        return bucket.get(path, {}).get("locals", {}).get(key, default)

    # ------------------------------------------------------------------
    # Wrapping
    # ------------------------------------------------------------------
    def _create_wrapper(self, plugin: BasePlugin, plugin_call: Middleware) -> Middleware:
        @wraps(plugin_call)
        async def wrapper(ctx, input, res, call_next):  # noqa: A002
            if not self.is_plugin_enabled(plugin.name, plugin.current_path()):
                return await call_next()
            return await plugin_call(ctx, input, res, call_next)

        return wrapper

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def members(self) -> Dict[str, Any]:  # type: ignore[override]
        result = super().members()
        if self._plugins:
            result["plugins"] = {
                plugin.name: {
                    "description": plugin.plugin_description,
                    "config": plugin.configuration(),
                }
                for plugin in self._plugins
            }
        return result


def create_router(routes: Mapping[str, Any], **kwargs: Any) -> Router:
    """Build a :class:`Router` from a name → procedure/router mapping."""
    return Router(routes, **kwargs)
