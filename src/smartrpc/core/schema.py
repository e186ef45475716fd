"""Schema adapters consumed by procedures.

A schema is anything exposing ``parse(value) -> parsed``. The core calls it
for input and output and never looks inside the failure it raises.

``as_schema`` normalizes what users pass to ``procedure()``:

- objects with a callable ``parse`` are used unchanged;
- ``None`` becomes :class:`AnySchema` (identity, no validation);
- anything else is treated as a type annotation and wrapped by
  :class:`PydanticSchema` (``pydantic.TypeAdapter``). Pydantic models,
  ``TypedDict`` classes, builtins and generics such as ``dict[str, int]`` all
  work.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import TypeAdapter, ValidationError

__all__ = ["Schema", "AnySchema", "PydanticSchema", "as_schema", "validation_errors"]


@runtime_checkable
class Schema(Protocol):
    def parse(self, value: Any) -> Any: ...


class AnySchema:
    """Pass-through schema used when no annotation is available."""

    def parse(self, value: Any) -> Any:
        return value

    def json_schema(self) -> Dict[str, Any]:
        return {}

    def __repr__(self) -> str:
        return "AnySchema()"


class PydanticSchema:
    """Validate values against a type via ``pydantic.TypeAdapter``."""

    __slots__ = ("annotation", "_adapter")

    def __init__(self, annotation: Any):
        self.annotation = annotation
        self._adapter: TypeAdapter[Any] = TypeAdapter(annotation)

    def parse(self, value: Any) -> Any:
        return self._adapter.validate_python(value)

    def dump(self, value: Any) -> Any:
        """Return a JSON-compatible rendition of an already parsed value."""
        return self._adapter.dump_python(value, mode="json")

    def json_schema(self) -> Dict[str, Any]:
        return self._adapter.json_schema()

    def __repr__(self) -> str:
        name = getattr(self.annotation, "__name__", None) or repr(self.annotation)
        return f"PydanticSchema({name})"


def as_schema(obj: Optional[Any]) -> Any:
    if obj is None:
        return AnySchema()
    parse = getattr(obj, "parse", None)
    if callable(parse) and not isinstance(obj, type):
        return obj
    return PydanticSchema(obj)


def validation_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    """Return the JSON-safe error list of a pydantic ``ValidationError``."""
    return json.loads(exc.json(include_url=False))
