"""Shared fixtures for SmartRPC tests."""

import pytest

from smartrpc.server import ResponseSink


@pytest.fixture
def sink():
    return ResponseSink()


@pytest.fixture
def calls():
    return []


@pytest.fixture
def recorder(calls):
    """Build middleware that appends its label to ``calls`` and continues."""

    def make(label):
        async def middleware(ctx, input, res, call_next):
            calls.append(label)
            return await call_next()

        middleware.__name__ = f"mw_{label}"
        return middleware

    return make
