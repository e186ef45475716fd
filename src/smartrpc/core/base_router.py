"""Plugin-free router runtime (source of truth).

The module exposes :class:`BaseRouter`, an internal node of the procedure
tree. It maps segment names to children (procedures or routers), owns an
ordered middleware list, resolves dispatch paths and runs the terminal
procedure's pipeline. :class:`smartrpc.core.router.Router` adds plugins on
top and must preserve these semantics.

Constructor
-----------
``BaseRouter(routes=None, *, name=None)``

- ``routes`` maps segment names to :class:`Procedure` or :class:`BaseRouter`
  instances. Names must be non-empty strings without ``.`` or ``/``; anything
  else raises ``ValueError``. Children of another type raise ``TypeError``.
- Children are classified once into a tagged union (``_Leaf`` holding a
  procedure, ``_Node`` holding a router). The mapping is frozen: there is no
  add/remove operation after construction. ``routes`` returns a read-only view.

Middleware registration
-----------------------
``use(middleware)`` appends to the router's own list and returns ``self``. It
affects calls started afterwards; a call already running keeps the list it
captured.

Dispatch
--------
``await call(ctx, path, input, res)``

- ``path`` is either a string split on ``.`` and ``/`` or any other
  sequence of segment strings.
- Resolution walks one segment per level:

  * unknown segment (or an empty path) raises ``RouteNotFound`` (404);
  * a ``_Leaf`` with segments left over raises ``RouteNotCallable`` (400);
  * a ``_Leaf`` at the last segment runs ``procedure.call`` with the
    effective list ``inherited + router.middlewares + procedure.middlewares``;
  * a ``_Node`` recurses with ``inherited + router.middlewares``;
  * any other tag raises ``InvalidRoute`` (400).

- Error messages name the full dot-joined path as given to the router that
  started the call.
- The current :class:`~smartrpc.core.context.CallInfo` is published for the
  duration of the pipeline, together with the routers traversed so plugins
  can match their per-route patterns relative to their own router.

``resolve(path)`` performs the same walk without executing and returns
``(procedure, effective_middlewares)``.

Introspection
-------------
``members()`` returns ``{"name", "middlewares", "procedures", "routers"}``
where ``procedures`` maps names to ``Procedure.describe()`` output and
``routers`` maps names to nested ``members()`` dicts.

Invariants
----------
- Effective middleware lists are fresh tuples built per traversal. No call
  writes to any node's stored ``middlewares``, so repeated calls never grow
  the chain and a procedure shared by several routers sees only the
  middleware of the path actually traversed.
- Within one call the order is fixed: outer router, each nested router,
  procedure, handler; every layer runs exactly once.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .context import CallInfo, current_call
from .errors import InvalidRoute, RouteNotCallable, RouteNotFound
from .procedure import Middleware, Procedure, ResponseLike

__all__ = ["BaseRouter", "split_path"]

_SEPARATORS = re.compile(r"[./]")


@dataclass(frozen=True)
class _Leaf:
    procedure: Procedure


@dataclass(frozen=True)
class _Node:
    router: "BaseRouter"


_Route = Union[_Leaf, _Node]


def split_path(path: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    """Normalize a dispatch path into a tuple of segments."""
    if isinstance(path, str):
        path = path.strip()
        return tuple(_SEPARATORS.split(path)) if path else ()
    if isinstance(path, Sequence):
        for segment in path:
            if not isinstance(segment, str):
                raise TypeError(f"Path segments must be strings, got {segment!r}")
        return tuple(path)
    raise TypeError(f"Dispatch path must be a string or a sequence, got {type(path).__name__}")


class BaseRouter:
    """Internal node of the procedure tree.

    Responsibilities:
    - hold the frozen mapping of child procedures and routers
    - own an ordered middleware list
    - resolve dispatch paths and run the terminal procedure
    """

    __slots__ = ("name", "middlewares", "_routes")

    def __init__(
        self,
        routes: Optional[Mapping[str, Any]] = None,
        *,
        name: Optional[str] = None,
    ) -> None:
        self.name = name
        self.middlewares: list[Middleware] = []
        self._routes: Dict[str, _Route] = {
            key: self._classify(key, child) for key, child in (routes or {}).items()
        }

    @staticmethod
    def _classify(key: Any, child: Any) -> _Route:
        if not isinstance(key, str) or not key or _SEPARATORS.search(key):
            raise ValueError(f"Invalid route name: {key!r}")
        if isinstance(child, Procedure):
            return _Leaf(child)
        if isinstance(child, BaseRouter):
            return _Node(child)
        raise TypeError(
            f"Route '{key}' must be a Procedure or a Router, got {type(child).__name__}"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def routes(self) -> Mapping[str, Union[Procedure, "BaseRouter"]]:
        """Read-only view of the children."""
        view: Dict[str, Union[Procedure, BaseRouter]] = {}
        for key, route in self._routes.items():
            match route:
                case _Leaf(procedure=target):
                    view[key] = target
                case _Node(router=child):
                    view[key] = child
        return MappingProxyType(view)

    def use(self, middleware: Middleware) -> "BaseRouter":
        """Append ``middleware`` to this router's own list."""
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {middleware!r}")
        self.middlewares.append(middleware)
        return self

    def resolve(self, path: Union[str, Sequence[str]]) -> Tuple[Procedure, Tuple[Middleware, ...]]:
        """Return the target procedure and its effective middleware for ``path``."""
        segments = split_path(path)
        return self._resolve(segments, (), ".".join(segments))

    async def call(
        self,
        ctx: Any,
        path: Union[str, Sequence[str]],
        input: Any,  # noqa: A002
        res: ResponseLike,
    ) -> Any:
        """Dispatch ``input`` to the procedure named by ``path``."""
        segments = split_path(path)
        full_path = ".".join(segments)
        trail: List[BaseRouter] = []
        target, chain = self._resolve(segments, (), full_path, trail)
        token = current_call.set(CallInfo(full_path, segments, tuple(trail)))
        try:
            return await target.call(ctx, input, res, middlewares=chain)
        finally:
            current_call.reset(token)

    # ------------------------------------------------------------------
    # Routing helpers
    # ------------------------------------------------------------------
    def _resolve(
        self,
        segments: Tuple[str, ...],
        inherited: Tuple[Middleware, ...],
        full_path: str,
        trail: Optional[List["BaseRouter"]] = None,
    ) -> Tuple[Procedure, Tuple[Middleware, ...]]:
        if not segments:
            raise RouteNotFound(full_path)
        if trail is not None:
            trail.append(self)
        first, rest = segments[0], segments[1:]
        route = self._routes.get(first)
        if route is None:
            raise RouteNotFound(full_path)
        scope = (*inherited, *self.middlewares)
        match route:
            case _Leaf(procedure=target):
                if rest:
                    raise RouteNotCallable(full_path)
                return target, (*scope, *target.middlewares)
            case _Node(router=child):
                return child._resolve(rest, scope, full_path, trail)
            case _:
                raise InvalidRoute(first)

    # ------------------------------------------------------------------
    # Introspection helpers
    # ------------------------------------------------------------------
    def members(self) -> Dict[str, Any]:
        """Return a tree describing routers, procedures and their schemas."""
        procedures: Dict[str, Any] = {}
        routers: Dict[str, Any] = {}
        for key, route in self._routes.items():
            match route:
                case _Leaf(procedure=target):
                    procedures[key] = target.describe()
                case _Node(router=child):
                    routers[key] = child.members()
        result: Dict[str, Any] = {
            "name": self.name,
            "middlewares": len(self.middlewares),
        }
        if procedures:
            result["procedures"] = procedures
        if routers:
            result["routers"] = routers
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, routes={list(self._routes)})"
