"""Call-scoped information via ContextVar.

``Router.call`` publishes a :class:`CallInfo` for the duration of the
procedure pipeline. Plugins read it to know which route they are serving;
the caller-supplied ``ctx`` object stays untouched.

``CallInfo.routers`` lists the routers traversed, one per segment consumed,
so ``relative_path(router)`` gives the part of the path below ``router``.

``ContextVar`` is task-local under asyncio, so concurrent calls never see
each other's info.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Tuple

__all__ = ["CallInfo", "current_call", "get_current_call"]


@dataclass(frozen=True)
class CallInfo:
    path: str
    segments: Tuple[str, ...]
    routers: Tuple[Any, ...] = field(default=(), compare=False, repr=False)

    def relative_path(self, router: Any) -> str:
        """Dot-joined segments below ``router``; the full path if not traversed."""
        for depth, node in enumerate(self.routers):
            if node is router:
                return ".".join(self.segments[depth:])
        return self.path


current_call: ContextVar[CallInfo] = ContextVar("smartrpc_call")


def get_current_call() -> CallInfo:
    """Return the call being dispatched.

    Raises ``LookupError`` outside a dispatch.
    """
    return current_call.get()
