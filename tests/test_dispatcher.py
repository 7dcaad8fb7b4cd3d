"""Tests for the request dispatcher.

Every request goes to the RecordingBackend from conftest.py through an
httpx.MockTransport, so the tests can look at exactly what would have been
sent.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from openapi_mcp.dispatcher import RequestDispatcher, substitute_path
from openapi_mcp.errors import DispatchError, DispatchErrorKind
from openapi_mcp.loader import parse
from openapi_mcp.models import HttpResponse, Parameter, RouteTemplate
from openapi_mcp.registry import build_registry

BASE_URL = "https://backend.test"


def _registry(paths: dict):
    return build_registry(parse(json.dumps({"openapi": "3.0.0", "paths": paths})))


_PROJECTS = {
    "/projects": {
        "post": {
            "summary": "Create a project",
            "requestBody": {
                "content": {
                    "application/json": {
                        "schema": {
                            "type": "object",
                            "properties": {
                                "title": {"type": "string"},
                                "description": {"type": "string"},
                            },
                        },
                    },
                },
            },
        },
    },
    "/tasks/{task_id}": {
        "delete": {
            "parameters": [{"name": "task_id", "in": "path", "required": True, "schema": {"type": "string"}}],
        },
    },
    "/items": {
        "get": {
            "parameters": [
                {"name": "q", "in": "query", "required": True, "schema": {"type": "string"}},
                {"name": "tags", "in": "query", "schema": {"type": "array", "items": {"type": "string"}}},
                {"name": "archived", "in": "query", "schema": {"type": "boolean"}},
                {"name": "X-Trace", "in": "header", "schema": {"type": "string"}},
                {"name": "session", "in": "cookie", "schema": {"type": "string"}},
            ],
        },
    },
    "/labels": {
        "post": {
            "parameters": [{"name": "name", "in": "query", "required": True, "schema": {"type": "integer"}}],
            "requestBody": {
                "content": {
                    "application/json": {
                        "schema": {"type": "object", "properties": {"name": {"type": "string"}}},
                    },
                },
            },
        },
    },
}


@pytest.fixture
def projects():
    return _registry(_PROJECTS)


# ===========================================================================
# Path substitution
# ===========================================================================

class TestSubstitutePath:
    """Placeholders need a value each."""

    def test_all_present(self):
        assert substitute_path("/a/{a}/b/{b}", {"a": 1, "b": "x"}) == "/a/1/b/x"

    @pytest.mark.parametrize("missing", ["a", "b", "c"])
    def test_missing_placeholder_is_named(self, missing):
        arguments = {name: "v" for name in ("a", "b", "c") if name != missing}
        result = substitute_path("/x/{a}/{b}/{c}", arguments)
        assert isinstance(result, DispatchError)
        assert result.kind is DispatchErrorKind.MISSING_PATH_PARAMETER
        assert result.parameter == missing

    def test_none_counts_as_missing(self):
        result = substitute_path("/x/{a}", {"a": None})
        assert isinstance(result, DispatchError)

    def test_values_are_url_encoded(self):
        assert substitute_path("/files/{name}", {"name": "a b/c"}) == "/files/a%20b%2Fc"

    def test_bool_values(self):
        assert substitute_path("/flags/{on}", {"on": True}) == "/flags/true"


# ===========================================================================
# Request construction
# ===========================================================================

class TestExecute:
    """End-to-end dispatch against the recording backend."""

    async def test_post_json_body(self, dispatcher, backend, projects):
        route = projects.get("projects_post").route
        result = await dispatcher.execute(route, BASE_URL, {"title": "Test", "description": "D"})

        assert isinstance(result, HttpResponse)
        request = backend.last
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/projects"
        assert request.url.query == b""
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"title": "Test", "description": "D"}

    async def test_delete_has_no_body(self, dispatcher, backend, projects):
        route = projects.get("tasks_task_id_delete").route
        await dispatcher.execute(route, BASE_URL, {"task_id": "abc"})

        request = backend.last
        assert request.method == "DELETE"
        assert str(request.url) == f"{BASE_URL}/tasks/abc"
        assert request.content == b""

    async def test_missing_path_parameter_never_sent(self, dispatcher, backend, projects):
        route = projects.get("tasks_task_id_delete").route
        result = await dispatcher.execute(route, BASE_URL, {})

        assert isinstance(result, DispatchError)
        assert result.kind is DispatchErrorKind.MISSING_PATH_PARAMETER
        assert result.parameter == "task_id"
        assert backend.requests == []

    async def test_missing_required_query(self, dispatcher, backend, projects):
        route = projects.get("items_get").route
        result = await dispatcher.execute(route, BASE_URL, {"tags": ["a"]})

        assert isinstance(result, DispatchError)
        assert result.kind is DispatchErrorKind.MISSING_REQUIRED_PARAMETER
        assert result.parameter == "q"
        assert backend.requests == []

    async def test_optional_query_omitted(self, dispatcher, backend, projects):
        route = projects.get("items_get").route
        await dispatcher.execute(route, BASE_URL, {"q": "milk"})
        assert str(backend.last.url) == f"{BASE_URL}/items?q=milk"

    async def test_query_lists_and_bools(self, dispatcher, backend, projects):
        route = projects.get("items_get").route
        await dispatcher.execute(route, BASE_URL, {"q": "x", "tags": ["a", "b"], "archived": False})
        params = backend.last.url.params
        assert params.get_list("tags") == ["a", "b"]
        assert params["archived"] == "false"

    async def test_header_and_cookie_parameters(self, dispatcher, backend, projects):
        route = projects.get("items_get").route
        await dispatcher.execute(route, BASE_URL, {"q": "x", "X-Trace": "t-1", "session": "s1"})
        request = backend.last
        assert request.headers["x-trace"] == "t-1"
        assert request.headers["cookie"] == "session=s1"
        assert "X-Trace" not in str(request.url)

    async def test_get_ignores_leftover_arguments(self, dispatcher, backend, projects):
        route = projects.get("items_get").route
        await dispatcher.execute(route, BASE_URL, {"q": "x", "unexpected": 1})
        assert backend.last.content == b""
        assert "unexpected" not in str(backend.last.url)

    async def test_body_field_shadows_query_parameter(self, dispatcher, backend, projects):
        """Same name in query and body: the body wins, so the value is sent in the body."""
        route = projects.get("labels_post").route
        result = await dispatcher.execute(route, BASE_URL, {"name": "urgent"})

        assert isinstance(result, HttpResponse)
        assert backend.last.url.query == b""
        assert json.loads(backend.last.content) == {"name": "urgent"}

    async def test_body_field_named_like_path_parameter(self, dispatcher, backend):
        """The value fills the placeholder and is also sent in the body."""
        registry = _registry({
            "/todos/{id}": {
                "put": {
                    "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}],
                    "requestBody": {
                        "required": True,
                        "content": {
                            "application/json": {
                                "schema": {
                                    "type": "object",
                                    "required": ["id", "title"],
                                    "properties": {"id": {"type": "string"}, "title": {"type": "string"}},
                                },
                            },
                        },
                    },
                },
            },
        })
        await dispatcher.execute(registry.get("todos_id_put").route, BASE_URL, {"id": "7", "title": "x"})

        assert backend.last.url.path == "/todos/7"
        assert json.loads(backend.last.content) == {"id": "7", "title": "x"}

    async def test_trailing_slash_on_base_url(self, dispatcher, backend, projects):
        route = projects.get("tasks_task_id_delete").route
        await dispatcher.execute(route, BASE_URL + "/", {"task_id": "1"})
        assert str(backend.last.url) == f"{BASE_URL}/tasks/1"


class TestFixtureRoutes:
    """Routes built from the fixture documents."""

    async def test_put_with_header_parameter(self, dispatcher, backend, todo_registry):
        route = todo_registry.get("todos_id_put").route
        await dispatcher.execute(route, BASE_URL, {"id": "7", "If-Match": "etag-1", "title": "Milk"})

        request = backend.last
        assert request.method == "PUT"
        assert request.url.path == "/todos/7"
        assert request.headers["if-match"] == "etag-1"
        assert json.loads(request.content) == {"title": "Milk"}

    async def test_accept_hint(self, dispatcher, backend, todo_registry):
        await dispatcher.execute(todo_registry.get("search_get").route, BASE_URL, {"q": "milk"})
        assert backend.last.headers["accept"] == "text/plain"

    async def test_raw_text_body(self, dispatcher, backend, todo_registry):
        await dispatcher.execute(todo_registry.get("notes_post").route, BASE_URL, {"body": "remember milk"})
        request = backend.last
        assert request.content == b"remember milk"
        assert request.headers["content-type"] == "text/plain"

    async def test_form_body(self, dispatcher, backend, petstore_spec):
        route = build_registry(petstore_spec).get("pets_petid_photo_post").route
        await dispatcher.execute(route, BASE_URL, {"petId": 7, "caption": "Hello there"})

        request = backend.last
        assert request.url.path == "/pets/7/photo"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert request.content == b"caption=Hello+there"


# ===========================================================================
# Responses and failures
# ===========================================================================

class TestResponses:
    """Every status is a successful dispatch; only transport failures are errors."""

    async def test_not_found_is_a_response(self, dispatcher, backend, projects):
        backend.respond(404, json={"error": "not found"})
        route = projects.get("tasks_task_id_delete").route
        result = await dispatcher.execute(route, BASE_URL, {"task_id": "abc"})

        assert isinstance(result, HttpResponse)
        assert result.status_code == 404
        assert result.body == {"error": "not found"}
        assert result.is_error

    async def test_text_body(self, dispatcher, backend, todo_registry):
        backend.respond(200, text="milk\nbread")
        result = await dispatcher.execute(todo_registry.get("search_get").route, BASE_URL, {"q": "m"})
        assert result.body == "milk\nbread"

    async def test_invalid_json_falls_back_to_text(self, dispatcher, backend, todo_registry):
        backend.respond(200, content=b"not json", headers={"Content-Type": "application/json"})
        result = await dispatcher.execute(todo_registry.get("todos_get").route, BASE_URL, {})
        assert result.body == "not json"

    async def test_headers_lower_cased(self, dispatcher, backend, todo_registry):
        backend.respond(200, json=[], headers={"X-Request-Id": "abc"})
        result = await dispatcher.execute(todo_registry.get("todos_get").route, BASE_URL, {})
        assert result.headers["x-request-id"] == "abc"
        assert all(key == key.lower() for key in result.headers)

    @pytest.mark.parametrize("error", [
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("timed out"),
    ])
    async def test_transport_failure_is_returned_not_retried(self, dispatcher, backend, todo_registry, error):
        backend.fail_with(error)
        result = await dispatcher.execute(todo_registry.get("todos_get").route, BASE_URL, {})

        assert isinstance(result, DispatchError)
        assert result.kind is DispatchErrorKind.TRANSPORT
        assert result.cause is error
        assert len(backend.requests) == 1

    def test_error_to_dict(self):
        error = DispatchError(DispatchErrorKind.MISSING_PATH_PARAMETER, "missing id", parameter="id")
        assert error.to_dict() == {"error": "MissingPathParameter", "message": "missing id", "parameter": "id"}


class TestDispatcher:
    """Configuration, lookup and concurrency."""

    async def test_static_headers(self, backend):
        transport = httpx.MockTransport(backend)
        route = RouteTemplate(path="/ping", method="GET", headers={"X-Route": "r"})
        async with RequestDispatcher(headers={"Authorization": "Bearer t", "X-Route": "static"}, transport=transport) as d:
            await d.execute(route, BASE_URL, {})
        assert backend.last.headers["authorization"] == "Bearer t"
        # Route headers win over static ones
        assert backend.last.headers["x-route"] == "r"

    async def test_timeout_applied(self, backend):
        route = RouteTemplate(path="/ping", method="GET")
        async with RequestDispatcher(timeout=2.5, transport=httpx.MockTransport(backend)) as d:
            request = d.build_request(route, BASE_URL, {})
        assert request.extensions["timeout"]["read"] == 2.5

    async def test_invoke_by_name_uses_spec_server(self, dispatcher, backend, todo_registry):
        result = await dispatcher.invoke(todo_registry, "todos_get", {"limit": 5})
        assert isinstance(result, HttpResponse)
        assert str(backend.last.url) == "https://api.example.com/v1/todos?limit=5"

    async def test_invoke_unknown_tool(self, dispatcher, backend, todo_registry):
        result = await dispatcher.invoke(todo_registry, "nope", {})
        assert isinstance(result, DispatchError)
        assert result.kind is DispatchErrorKind.UNKNOWN_TOOL
        assert backend.requests == []

    async def test_concurrent_calls_are_independent(self, dispatcher, backend, todo_registry):
        route = todo_registry.get("todos_id_get").route
        results = await asyncio.gather(
            *(dispatcher.execute(route, BASE_URL, {"id": str(i)}) for i in range(10))
        )
        assert all(isinstance(r, HttpResponse) for r in results)
        assert sorted(r.url.path for r in backend.requests) == sorted(f"/todos/{i}" for i in range(10))

    async def test_route_parameters_are_not_mutated(self, dispatcher, todo_registry):
        route = todo_registry.get("todos_id_put").route
        before = (route.parameters, dict(route.headers), route.body_fields)
        arguments = {"id": "1", "title": "x"}
        await dispatcher.execute(route, BASE_URL, arguments)
        assert (route.parameters, dict(route.headers), route.body_fields) == before
        assert arguments == {"id": "1", "title": "x"}

    def test_parameter_defaults(self):
        assert Parameter("q", "query").required is False
