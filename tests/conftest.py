"""Shared fixtures.

Documents live in tests/fixtures. HTTP never leaves the process: dispatchers
are wired to an httpx.MockTransport that records every request.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import pytest

from openapi_mcp.adjustments import load_adjustments
from openapi_mcp.dispatcher import RequestDispatcher
from openapi_mcp.loader import load_spec
from openapi_mcp.registry import build_registry

FIXTURES = Path(__file__).parent / "fixtures"

BASE_URL = "https://backend.test"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@pytest.fixture
def todo_spec():
    return load_spec(FIXTURES / "todo.yaml")


@pytest.fixture
def petstore_spec():
    return load_spec(FIXTURES / "petstore_v2.json")


@pytest.fixture
def todo_adjustments():
    return load_adjustments(FIXTURES / "adjustments.yaml")


@pytest.fixture
def todo_registry(todo_spec):
    return build_registry(todo_spec)


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------

class RecordingBackend:
    """MockTransport handler that records requests and replays a canned response."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._status = 200
        self._kwargs: dict[str, Any] = {"json": {"ok": True}}
        self._error: Exception | None = None

    def respond(self, status: int = 200, **kwargs: Any) -> None:
        self._status = status
        self._kwargs = kwargs
        self._error = None

    def fail_with(self, error: Exception) -> None:
        self._error = error

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "no request reached the backend"
        return self.requests[-1]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        return httpx.Response(self._status, **self._kwargs)


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
async def dispatcher(backend):
    """RequestDispatcher whose transport is the recording backend."""
    async with RequestDispatcher(transport=httpx.MockTransport(backend)) as d:
        yield d
