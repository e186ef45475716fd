"""
Example showing nested routers, middleware and plugins served over HTTP.

    python examples/echo_server.py
    curl -X POST localhost:3000/rpc/echo -d '{"input": {"message": "Hello"}}'
    curl -X POST localhost:3000/rpc/v1/users/get \
         -d '{"input": {"id": 1}, "context": {"token": "secret"}}'
"""

from __future__ import annotations

from pydantic import BaseModel

from smartrpc import RPCError, create_router, procedure
from smartrpc.server import serve


class EchoIn(BaseModel):
    message: str


class EchoOut(BaseModel):
    result: str


class UserRef(BaseModel):
    id: int


class User(BaseModel):
    id: int
    name: str


USERS = {1: "ann", 2: "bob"}


@procedure
async def echo(ctx, data: EchoIn) -> EchoOut:
    return EchoOut(result=f"Echo: {data.message}")


@procedure
async def get_user(ctx, ref: UserRef) -> User:
    if ref.id not in USERS:
        raise RPCError(404, "User not found", {"id": ref.id})
    return User(id=ref.id, name=USERS[ref.id])


async def require_token(ctx, input, res, call_next):
    if ctx.get("token") != "secret":
        raise RPCError(401, "Authentication required")
    return await call_next()


async def powered_by(ctx, input, res, call_next):
    res.set_header("X-Powered-By", "smartrpc")
    return await call_next()


users = create_router({"get": get_user}, name="users").use(require_token)
root = create_router(
    {"echo": echo, "v1": create_router({"users": users}, name="v1")},
    name="root",
).use(powered_by).plug("logging")


if __name__ == "__main__":
    serve(root, port=3000)
