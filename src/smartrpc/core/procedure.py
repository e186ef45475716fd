"""Procedure: the terminal endpoint of a router tree (source of truth).

A :class:`Procedure` owns an input schema, an output schema, a handler and its
own ordered middleware list. It has no back-reference to the routers that
expose it, so the same instance may be attached under several parents.

Pipeline
--------
``await procedure.call(ctx, raw_input, res, *, middlewares=None)``

1. ``raw_input`` is parsed by the input schema. The parsed value, not the raw
   one, flows to middleware and handler. Validation failures propagate
   unchanged.
2. The effective middleware list (``middlewares`` when given, otherwise the
   procedure's own list) is composed right to left. The innermost ``next``
   invokes ``handler(ctx, parsed, res)``.
3. The outermost layer runs first. A middleware that never awaits ``next()``
   short-circuits the chain: its return value becomes the result and nothing
   further inward executes.
4. The result is parsed by the output schema and returned.

Middleware
----------
Any callable ``(ctx, input, res, next) -> result``. Functions may be sync or
async; awaitable results are awaited. ``next`` takes no arguments and returns
an awaitable. Awaiting ``next()`` twice from the same layer is a caller error
and raises ``RuntimeError``.

Handlers are called with ``(ctx, input, res)``; handlers declaring fewer
positional parameters receive only the leading ones.

Builders
--------
``procedure()`` returns a staged builder::

    echo = procedure().input(EchoIn).output(EchoOut).implement(do_echo)

It also works as a decorator. Schemas left unset are inferred from type hints:
the annotation of the handler's second positional parameter is the input
schema and the return annotation is the output schema::

    @procedure
    async def echo(ctx, data: EchoIn) -> EchoOut: ...

Invariants
----------
- ``middlewares`` only grows through ``use()``; ``call`` never writes to it.
- Each layer of a chain runs at most once per call.
"""

from __future__ import annotations

import inspect
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    get_type_hints,
)

from pydantic import PydanticInvalidForJsonSchema

from .schema import as_schema

__all__ = ["Middleware", "Next", "Procedure", "ResponseLike", "procedure"]

Next = Callable[[], Awaitable[Any]]
Middleware = Callable[[Any, Any, "ResponseLike", Next], Any]

_UNSET: Any = object()


class ResponseLike(Protocol):
    """Response sink forwarded from the transport to handlers and middleware."""

    def set_header(self, key: str, value: str) -> None: ...

    def status(self, code: int) -> None: ...


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _positional_arity(func: Callable) -> Optional[int]:
    """Number of positional parameters ``func`` accepts, ``None`` if unbounded."""
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):  # pragma: no cover - builtins without signature
        return None
    count = 0
    for param in sig.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return None
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            count += 1
    return count


class Procedure:
    """Leaf endpoint with validated input/output and its own middleware."""

    __slots__ = ("input_schema", "output_schema", "handler", "middlewares", "_arity")

    def __init__(
        self,
        input_schema: Any,
        output_schema: Any,
        handler: Callable,
        middlewares: Optional[Sequence[Middleware]] = None,
    ) -> None:
        if not callable(handler):
            raise TypeError(f"Procedure handler must be callable, got {handler!r}")
        self.input_schema = as_schema(input_schema)
        self.output_schema = as_schema(output_schema)
        self.handler = handler
        self.middlewares: List[Middleware] = []
        self._arity = _positional_arity(handler)
        for middleware in middlewares or ():
            self.use(middleware)

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", type(self.handler).__name__)

    def use(self, middleware: Middleware) -> "Procedure":
        """Append ``middleware`` to this procedure's own list."""
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {middleware!r}")
        self.middlewares.append(middleware)
        return self

    async def call(
        self,
        ctx: Any,
        raw_input: Any,
        res: ResponseLike,
        *,
        middlewares: Optional[Sequence[Middleware]] = None,
    ) -> Any:
        """Validate, run the middleware chain and the handler, validate again."""
        parsed = self.input_schema.parse(raw_input)
        chain = tuple(self.middlewares if middlewares is None else middlewares)
        result = await self._compose(chain, ctx, parsed, res)()
        return self.output_schema.parse(result)

    def _compose(self, chain: Sequence[Middleware], ctx: Any, value: Any, res: Any) -> Next:
        async def invoke_handler() -> Any:
            args = (ctx, value, res)
            if self._arity is not None:
                args = args[: self._arity]
            return await _resolve(self.handler(*args))

        call_next: Next = invoke_handler
        for middleware in reversed(chain):
            call_next = _link(middleware, ctx, value, res, call_next)
        return call_next

    def describe(self) -> Dict[str, Any]:
        """Return doc, JSON schemas and middleware count for introspection.

        A schema with no JSON schema rendering (e.g. a ``Callable``) is ``None``.
        """
        return {
            "name": self.name,
            "doc": inspect.getdoc(self.handler) or "",
            "input": _json_schema(self.input_schema),
            "output": _json_schema(self.output_schema),
            "middlewares": len(self.middlewares),
        }

    def __repr__(self) -> str:
        return (
            f"Procedure({self.name}, input={self.input_schema!r}, "
            f"output={self.output_schema!r}, middlewares={len(self.middlewares)})"
        )


def _link(middleware: Middleware, ctx: Any, value: Any, res: Any, inner: Next) -> Next:
    async def step() -> Any:
        called = False

        async def call_next() -> Any:
            nonlocal called
            if called:
                raise RuntimeError(
                    f"next() called more than once by middleware {middleware!r}"
                )
            called = True
            return await inner()

        return await _resolve(middleware(ctx, value, res, call_next))

    return step


def _json_schema(schema: Any) -> Optional[Dict[str, Any]]:
    getter = getattr(schema, "json_schema", None)
    if not callable(getter):
        return None
    try:
        return getter()
    except PydanticInvalidForJsonSchema:
        return None


class _ProcedureBuilder:
    """Staged ``input().output().implement()`` builder, usable as decorator."""

    __slots__ = ("_input", "_output", "_middlewares")

    def __init__(
        self,
        input_schema: Any = _UNSET,
        output_schema: Any = _UNSET,
        middlewares: Optional[Sequence[Middleware]] = None,
    ) -> None:
        self._input = input_schema
        self._output = output_schema
        self._middlewares = list(middlewares or ())

    def input(self, schema: Any) -> "_ProcedureBuilder":  # noqa: A003
        return _ProcedureBuilder(schema, self._output, self._middlewares)

    def output(self, schema: Any) -> "_ProcedureBuilder":
        return _ProcedureBuilder(self._input, schema, self._middlewares)

    def use(self, middleware: Middleware) -> "_ProcedureBuilder":
        return _ProcedureBuilder(self._input, self._output, [*self._middlewares, middleware])

    def implement(self, handler: Callable) -> Procedure:
        input_schema, output_schema = self._input, self._output
        if input_schema is _UNSET or output_schema is _UNSET:
            inferred_in, inferred_out = _infer_schemas(handler)
            if input_schema is _UNSET:
                input_schema = inferred_in
            if output_schema is _UNSET:
                output_schema = inferred_out
        return Procedure(input_schema, output_schema, handler, self._middlewares)

    __call__ = implement


def _infer_schemas(handler: Callable) -> tuple:
    try:
        hints = get_type_hints(handler)
    except Exception:
        # Unresolvable forward references: fall back to unvalidated values
        return None, None
    output_hint = hints.pop("return", None)
    input_hint = None
    params = [
        p
        for p in inspect.signature(handler).parameters.values()
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    if len(params) > 1:
        input_hint = hints.get(params[1].name)
    return input_hint, output_hint


def procedure(
    handler: Optional[Callable] = None,
    *,
    input: Any = _UNSET,  # noqa: A002 - mirrors the builder stage name
    output: Any = _UNSET,
    middlewares: Optional[Sequence[Middleware]] = None,
) -> Any:
    """Create a procedure builder, or a procedure when used as a bare decorator.

    Args:
        handler: Handler when ``procedure`` decorates a function directly.
        input: Input schema (type, pydantic model or object with ``parse``).
        output: Output schema.
        middlewares: Initial procedure-level middleware.
    """
    builder = _ProcedureBuilder(input, output, middlewares)
    if handler is not None:
        return builder.implement(handler)
    return builder
