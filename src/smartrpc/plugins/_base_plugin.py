"""Plugin contract definitions used by the Router runtime.

Source of truth
---------------
A plugin is a named, configurable middleware factory. Plugin classes are
registered globally (``Router.register_plugin``) and attached to a router by
name (``router.plug("logging", **config)``). Attaching instantiates the plugin
and registers the middleware it builds through ``router.use``, so plugin
layers obey exactly the same ordering rules as hand-written middleware.

``BasePlugin``
    Base class that every plugin *must* subclass.

    Required class attributes:

    - ``plugin_code`` – unique identifier used for registration (e.g. "logging")
    - ``plugin_description`` – human-readable description of the plugin

    Constructor signature:

    ``BasePlugin(router, **config)``

    - ``router`` is the Router instance owning this plugin
    - ``**config`` is passed to ``configure()``

    ``configure(**config)``
        Define accepted configuration parameters via method signature.
        The method is automatically wrapped by ``__init_subclass__`` to:
        - Extract and parse ``flags`` (e.g. "enabled,before:off") into booleans
        - Extract ``_target`` to determine where to write config:
          - ``"--base--"`` (default): router-level config
          - a dispatch path or fnmatch pattern (``"users.*"``): per-route config
          - ``"p1,p2"``: several targets (calls recursively)
        - Apply Pydantic's ``validate_call`` for parameter validation
        - Write the *validated* values to the router store (``"off"`` passed
          for a ``bool`` option is stored as ``False``)

    ``configuration(path=None)``
        Merged configuration: router-level config, then every per-route bucket
        whose pattern matches ``path`` (in insertion order).

    ``current_path()``
        Path of the running call relative to the owning router. Per-route
        patterns are matched against it, so a router configured with
        ``_target="ping"`` matches both when called directly and when reached
        as ``child.ping`` from a parent router.

    ``middleware()``
        Build the middleware registered on the router. Default passthrough.

Design constraints
~~~~~~~~~~~~~~~~~~
* The Router only imports this module (not the concrete plugins) to avoid
  circular dependencies.
* Configuration storage lives in the owning router's ``_plugin_info`` so all
  plugins behave consistently.
"""

from __future__ import annotations

import inspect
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, Optional, get_type_hints

from pydantic import TypeAdapter, validate_call

from smartrpc.core.context import current_call
from smartrpc.core.procedure import Middleware

__all__ = ["BasePlugin"]

BASE_TARGET = "--base--"


def _wrap_configure(original_configure: Callable) -> Callable:
    """Wrap a plugin's configure() method to handle flags, _target, validation, and storage."""
    validated = validate_call(original_configure)
    signature = inspect.signature(original_configure)
    adapters: Dict[str, TypeAdapter] = {}

    def coerce(kwargs: Dict[str, Any]) -> Dict[str, Any]:
        # Store what validation produced ("off" -> False), not the raw input
        if not adapters:
            hints = get_type_hints(original_configure)
            for name, param in signature.parameters.items():
                if param.kind in (param.POSITIONAL_OR_KEYWORD, param.KEYWORD_ONLY) and name in hints:
                    adapters[name] = TypeAdapter(hints[name])
        return {
            key: adapters[key].validate_python(value) if key in adapters else value
            for key, value in kwargs.items()
        }

    def wrapper(self: "BasePlugin", *, _target: str = BASE_TARGET, flags: Optional[str] = None, **kwargs: Any) -> None:
        if flags:
            kwargs.update(self._parse_flags(flags))

        if "," in _target:
            targets = [t.strip() for t in _target.split(",") if t.strip()]
            for t in targets:
                wrapper(self, _target=t, **kwargs)
            return

        validated(self, **kwargs)
        self._write_config(_target, coerce(kwargs))

    return wrapper


class BasePlugin:
    """Hook interface + configuration helpers for router plugins."""

    __slots__ = ("name", "_router")

    plugin_code: str = ""
    plugin_description: str = ""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "configure" in cls.__dict__:
            cls.configure = _wrap_configure(cls.__dict__["configure"])

    def __init__(self, router: Any, **config: Any):
        self.name = self.plugin_code
        self._router = router
        self._init_store()
        self.configure(**config)

    def _init_store(self) -> None:
        store = self._get_store()
        store.setdefault(self.name, {}).setdefault(
            BASE_TARGET, {"config": {"enabled": True}, "locals": {}}
        )

    def configure(self, *, _target: str = BASE_TARGET, flags: Optional[str] = None) -> None:
        """Override in subclasses to define accepted configuration parameters.

        Args:
            _target: Where to write config. "--base--" for router-level,
                     a dispatch path or pattern for per-route config.
            flags: String like "enabled,before:off" parsed into booleans.
        """
        if flags:
            self._write_config(_target, self._parse_flags(flags))

    def _write_config(self, target: str, config: Dict[str, Any]) -> None:
        if not config:
            return
        store = self._get_store()
        plugin_bucket = store.setdefault(self.name, {})
        bucket = plugin_bucket.setdefault(target, {"config": {}, "locals": {}})
        bucket["config"].update(config)

    def configuration(self, path: Optional[str] = None) -> Dict[str, Any]:
        """Read merged configuration (base + buckets matching ``path``)."""
        plugin_bucket = self._get_store().get(self.name)
        if not plugin_bucket:
            return {}
        merged = dict(plugin_bucket.get(BASE_TARGET, {}).get("config", {}))
        if path:
            for pattern, bucket in plugin_bucket.items():
                if pattern == BASE_TARGET:
                    continue
                if pattern == path or fnmatchcase(path, pattern):
                    merged.update(bucket.get("config", {}))
        return merged

    def current_path(self) -> Optional[str]:
        """Path of the running call relative to the owning router, or None."""
        info = current_call.get(None)
        if info is None:
            return None
        return info.relative_path(self._router)

    def _parse_flags(self, flags: str) -> Dict[str, bool]:
        mapping: Dict[str, bool] = {}
        for chunk in flags.split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            if ":" in chunk:
                name, value = chunk.split(":", 1)
                mapping[name.strip()] = value.strip().lower() != "off"
            else:
                mapping[chunk] = True
        return mapping

    def middleware(self) -> Middleware:
        """Build the middleware registered on the owning router; default passthrough."""

        async def passthrough(ctx, input, res, call_next):  # noqa: A002
            return await call_next()

        return passthrough

    def _get_store(self) -> Dict[str, Any]:
        return getattr(self._router, "_plugin_info")
