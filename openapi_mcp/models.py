"""Data model shared by the loader, registry and dispatcher.

Everything here is built once and read afterwards. Schemas are passed around
as plain JSON-Schema dicts, wrapped in ObjectSchema / OpaqueSchema so every
tool serializes the same way regardless of how its operation was written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

# Keys of a path item that describe operations
HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

PARAMETER_LOCATIONS = ("path", "query", "header", "cookie")

# Methods whose requests conventionally carry a payload
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Location tag written into every input property
LOCATION_KEY = "x-location"


@dataclass(frozen=True)
class Parameter:
    """A single declared parameter of an operation."""

    name: str
    location: str  # path / query / header / cookie
    required: bool = False
    schema: dict[str, Any] = field(default_factory=dict)
    description: str = ""


@dataclass(frozen=True)
class Operation:
    """One (path, method) entry of the document, with $refs already resolved."""

    summary: str = ""
    description: str = ""
    operation_id: str = ""
    parameters: tuple[Parameter, ...] = ()
    # content type -> schema
    request_body: dict[str, dict[str, Any]] | None = None
    body_required: bool = False
    # status code -> content type -> schema
    responses: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)


@dataclass(frozen=True)
class SpecDocument:
    paths: dict[str, dict[str, Operation]]
    title: str = ""
    version: str = ""
    servers: tuple[str, ...] = ()

    def operations(self) -> Iterator[tuple[str, str, Operation]]:
        """Yield (path, method, operation) in document order."""
        for path, methods in self.paths.items():
            for method, operation in methods.items():
                yield path, method, operation

    @property
    def default_base_url(self) -> str:
        return self.servers[0] if self.servers else ""


@dataclass(frozen=True)
class ObjectSchema:
    """An object schema with an ordered property namespace."""

    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": "object",
            "properties": {name: dict(prop) for name, prop in self.properties.items()},
        }
        if self.required:
            result["required"] = list(self.required)
        return result


@dataclass(frozen=True)
class OpaqueSchema:
    """Any schema that is not a plain object (arrays, scalars, or nothing at all)."""

    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)


Schema = ObjectSchema | OpaqueSchema


@dataclass(frozen=True)
class RouteTemplate:
    """The executable shape bound to one tool."""

    path: str
    method: str  # upper-case
    parameters: tuple[Parameter, ...] = ()
    headers: dict[str, str] = field(default_factory=dict)
    # Request body content type picked when the input schema was built
    content_type: str | None = None
    # Body property names, or ("body",) when the payload is not an object
    body_fields: tuple[str, ...] = ()
    raw_body: bool = False
    accept: str | None = None

    @property
    def has_body(self) -> bool:
        return self.content_type is not None


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: ObjectSchema
    output_schema: Schema

    def to_dict(self) -> dict[str, Any]:
        """Shape expected by a tool-listing transport."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema.to_dict(),
            "outputSchema": self.output_schema.to_dict(),
        }


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        """True for 4xx/5xx. Still a successful dispatch."""
        return self.status_code >= 400

    def to_dict(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "body": self.body,
            "headers": dict(self.headers),
        }
