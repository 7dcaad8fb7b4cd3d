"""Build the tool registry from a parsed specification and its adjustments.

Each permitted operation becomes a ToolDefinition paired with the
RouteTemplate used to call it. A Registry is an immutable snapshot; reloading
builds a new one and swaps a single reference in RegistryHolder, so calls
already holding a RegisteredTool keep working against the template they
captured.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator

from .adjustments import EMPTY_ADJUSTMENTS, AdjustmentSet, permits, resolve_description
from .errors import NamingCollision
from .models import LOCATION_KEY, ObjectSchema, Operation, RouteTemplate, SpecDocument, ToolDefinition
from .naming import build_tool_name
from .schema_parser import (
    RAW_BODY_FIELD,
    build_input,
    build_output,
    is_object_schema,
    request_body_layout,
    select_content_type,
    select_success_status,
)
from .validator import validate_tool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredTool:
    definition: ToolDefinition
    route: RouteTemplate

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def label(self) -> str:
        return f"{self.route.method} {self.route.path}"


@dataclass(frozen=True)
class Registry:
    """Ordered, read-only collection of registered tools."""

    tools: tuple[RegisteredTool, ...] = ()
    diagnostics: tuple[NamingCollision, ...] = ()
    title: str = ""
    default_base_url: str = ""
    _by_name: dict[str, RegisteredTool] = field(
        default_factory=dict, init=False, repr=False, compare=False,
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_name", {tool.name: tool for tool in self.tools})

    def __len__(self) -> int:
        return len(self.tools)

    def __iter__(self) -> Iterator[RegisteredTool]:
        return iter(self.tools)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> RegisteredTool | None:
        return self._by_name.get(name)

    @property
    def names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    def list_tools(self) -> list[dict[str, Any]]:
        """The {name, description, inputSchema, outputSchema} listing."""
        return [tool.definition.to_dict() for tool in self.tools]


def _route_template(path: str, method: str, operation: Operation, input_schema: ObjectSchema) -> RouteTemplate:
    content_type, body_schema = request_body_layout(operation)
    raw_body = body_schema is not None and not is_object_schema(body_schema)
    if raw_body:
        body_fields: tuple[str, ...] = (RAW_BODY_FIELD,)
    else:
        body_fields = tuple(
            name for name, prop in input_schema.properties.items()
            if prop.get(LOCATION_KEY) == "body"
        )

    accept = None
    status = select_success_status(operation.responses)
    if status is not None:
        accept = select_content_type(operation.responses[status])

    return RouteTemplate(
        path=path,
        method=method.upper(),
        parameters=operation.parameters,
        # Extension point for per-route auth headers
        headers={},
        content_type=content_type,
        body_fields=body_fields,
        raw_body=raw_body,
        accept=accept,
    )


def _description(path: str, method: str, operation: Operation, adjustments: AdjustmentSet) -> str:
    summary = operation.summary or operation.description
    return resolve_description(path, method, summary, adjustments)


def build_registry(spec: SpecDocument, adjustments: AdjustmentSet | None = None) -> Registry:
    """Turn every permitted operation of spec into a registered tool.

    Tool names must be unique: when two operations normalize to the same
    name the first one is kept, the later one is dropped and a
    NamingCollision is recorded on the result.
    """
    adjustments = adjustments or EMPTY_ADJUSTMENTS
    tools: list[RegisteredTool] = []
    seen: dict[str, RegisteredTool] = {}
    diagnostics: list[NamingCollision] = []
    skipped = 0

    for path, method, operation in spec.operations():
        if not permits(path, method, adjustments):
            logger.debug("Filtered out %s %s", method.upper(), path)
            skipped += 1
            continue

        name = build_tool_name(method, path)
        label = f"{method.upper()} {path}"
        if name in seen:
            collision = NamingCollision(name=name, kept=seen[name].label, dropped=label)
            logger.warning("Naming collision: %s", collision)
            diagnostics.append(collision)
            continue

        input_schema = build_input(operation)
        definition = ToolDefinition(
            name=name,
            description=_description(path, method, operation, adjustments),
            input_schema=input_schema,
            output_schema=build_output(operation),
        )
        tool = RegisteredTool(definition, _route_template(path, method, operation, input_schema))

        result = validate_tool(definition)
        for problem in result.errors:
            logger.warning("Tool %s may be rejected by strict clients: %s", name, problem)

        seen[name] = tool
        tools.append(tool)
        logger.debug("Registered tool %s for %s", name, label)

    logger.info(
        "Built registry: %d tools, %d routes filtered out, %d name collisions",
        len(tools), skipped, len(diagnostics),
    )
    return Registry(
        tools=tuple(tools),
        diagnostics=tuple(diagnostics),
        title=spec.title,
        default_base_url=spec.default_base_url,
    )


class RegistryHolder:
    """Holds the current registry snapshot and swaps it on reload."""

    def __init__(self, registry: Registry | None = None):
        self._registry = registry or Registry()
        self._lock = threading.Lock()

    @property
    def current(self) -> Registry:
        return self._registry

    def reload(self, spec: SpecDocument, adjustments: AdjustmentSet | None = None) -> Registry:
        """Build a new snapshot and make it current.

        If the build raises, the previous snapshot stays in place.
        """
        registry = build_registry(spec, adjustments)
        with self._lock:
            self._registry = registry
        return registry
