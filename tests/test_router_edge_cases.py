from collections import UserList
from types import MappingProxyType
from typing import Callable

import pytest

from smartrpc import InvalidRoute, Procedure, RouteNotFound, Router, create_router, procedure
from smartrpc.core.base_router import BaseRouter, split_path


def noop():
    return procedure(lambda ctx, data: data)


def test_split_path_variants():
    assert split_path("a.b/c") == ("a", "b", "c")
    assert split_path(" a ") == ("a",)
    assert split_path("") == ()
    assert split_path(["a", "b"]) == ("a", "b")
    assert split_path(("a",)) == ("a",)
    assert split_path(UserList(["a", "b"])) == ("a", "b")
    with pytest.raises(TypeError):
        split_path(["a", 1])
    with pytest.raises(TypeError):
        split_path(42)


@pytest.mark.parametrize("bad_name", ["", "a.b", "a/b", 3])
def test_invalid_route_names_rejected(bad_name):
    with pytest.raises(ValueError):
        create_router({bad_name: noop()})


def test_non_route_children_rejected():
    with pytest.raises(TypeError, match="must be a Procedure or a Router"):
        create_router({"oops": lambda ctx, data: data})


def test_routes_view_is_read_only():
    leaf = noop()
    child = create_router({})
    router = create_router({"leaf": leaf, "child": child})
    routes = router.routes
    assert isinstance(routes, MappingProxyType)
    assert routes["leaf"] is leaf
    assert routes["child"] is child
    with pytest.raises(TypeError):
        routes["new"] = noop()  # type: ignore[index]


def test_router_does_not_expose_children_as_attributes():
    router = create_router({"echo": noop()})
    with pytest.raises(AttributeError):
        router.echo  # noqa: B018


@pytest.mark.asyncio
async def test_empty_path_is_not_found(sink):
    router = create_router({"echo": noop()})
    with pytest.raises(RouteNotFound):
        await router.call({}, "", None, sink)
    with pytest.raises(RouteNotFound):
        await router.call({}, [], None, sink)


@pytest.mark.asyncio
async def test_empty_segment_is_not_found(sink):
    router = create_router({"a": create_router({"b": noop()})})
    with pytest.raises(RouteNotFound):
        await router.call({}, "a..b", None, sink)


@pytest.mark.asyncio
async def test_unexpected_route_tag_raises_invalid_route(sink):
    router = create_router({})
    router._routes["weird"] = object()  # bypass construction-time classification
    with pytest.raises(InvalidRoute) as excinfo:
        await router.call({}, "weird", None, sink)
    assert excinfo.value.code == 400
    assert excinfo.value.message == "Invalid route at 'weird'"


@pytest.mark.asyncio
async def test_base_router_dispatches_without_plugins(sink, calls, recorder):
    inner = BaseRouter({"ping": procedure(lambda ctx, data: "pong")}).use(recorder("inner"))
    outer = Router({"inner": inner}).use(recorder("outer"))
    assert await outer.call({}, "inner.ping", None, sink) == "pong"
    assert calls == ["outer", "inner"]


def test_use_rejects_non_callables():
    with pytest.raises(TypeError):
        create_router({}).use("not callable")


def test_members_describes_tree():
    @procedure
    def get(ctx, ident: int) -> str:
        """Fetch a user."""
        return str(ident)

    users = create_router({"get": get}, name="users")
    root = create_router({"users": users, "ping": noop()}, name="root").plug("logging")
    tree = root.members()

    assert tree["name"] == "root"
    assert tree["middlewares"] == 1
    assert set(tree["procedures"]) == {"ping"}
    user_tree = tree["routers"]["users"]
    assert user_tree["name"] == "users"
    assert user_tree["procedures"]["get"]["doc"] == "Fetch a user."
    assert user_tree["procedures"]["get"]["input"] == {"type": "integer"}
    assert user_tree["procedures"]["get"]["output"] == {"type": "string"}
    assert tree["plugins"]["logging"]["config"]["enabled"] is True


def test_empty_router_members():
    assert create_router({}).members() == {"name": None, "middlewares": 0}


def test_repr_mentions_routes():
    router = create_router({"a": noop()}, name="api")
    assert "api" in repr(router) and "'a'" in repr(router)
    assert "Procedure(" in repr(router.routes["a"])


def test_procedure_can_be_reused_under_many_routers():
    shared = noop()
    left = create_router({"x": shared})
    right = create_router({"y": shared})
    assert left.resolve("x")[0] is right.resolve("y")[0] is shared
    assert isinstance(shared, Procedure)


def test_members_survives_schema_without_json_rendering():
    apply = procedure(input=Callable[[int], int])(lambda ctx, fn: fn(2))
    tree = create_router({"apply": apply, "ping": noop()}).members()
    assert tree["procedures"]["apply"]["input"] is None
    assert tree["procedures"]["apply"]["output"] == {}
    assert set(tree["procedures"]) == {"apply", "ping"}
