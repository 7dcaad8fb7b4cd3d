"""Check tool definitions against what strict tool-calling clients accept.

Rules:
- name is at most 64 characters
- name matches [a-zA-Z_][a-zA-Z0-9_]*
- no oneOf / anyOf / allOf / $ref anywhere in the input schema
  (additionalProperties only warns)
- a typed output schema must be an object
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from .models import ToolDefinition

MAX_NAME_LENGTH = 64

_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

_UNSUPPORTED_KEYWORDS = ("oneOf", "anyOf", "allOf", "$ref")
_DISCOURAGED_KEYWORDS = ("additionalProperties",)


@dataclass
class ValidationResult:
    tool_name: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class CompatibilityReport:
    results: list[ValidationResult]

    @property
    def total_tools(self) -> int:
        return len(self.results)

    @property
    def valid_tools(self) -> int:
        return sum(1 for r in self.results if r.is_valid)

    @property
    def invalid_tools(self) -> int:
        return self.total_tools - self.valid_tools

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tools": self.total_tools,
            "valid_tools": self.valid_tools,
            "invalid_tools": self.invalid_tools,
            "results": [
                {"tool": r.tool_name, "valid": r.is_valid, "errors": r.errors, "warnings": r.warnings}
                for r in self.results
                if r.errors or r.warnings
            ],
        }


def _schema_issues(schema: dict[str, Any], where: str = "") -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []
    prefix = f"In property '{where}': " if where else ""
    for keyword in _UNSUPPORTED_KEYWORDS:
        if keyword in schema:
            errors.append(f"{prefix}Schema contains unsupported keyword '{keyword}'")
    for keyword in _DISCOURAGED_KEYWORDS:
        if keyword in schema:
            warnings.append(f"{prefix}Schema contains keyword '{keyword}'")

    nested = dict(schema.get("properties") or {})
    if isinstance(schema.get("items"), dict):
        nested["[]"] = schema["items"]
    for name, sub in nested.items():
        if isinstance(sub, dict):
            path = f"{where}.{name}" if where else name
            sub_errors, sub_warnings = _schema_issues(sub, path)
            errors.extend(sub_errors)
            warnings.extend(sub_warnings)
    return errors, warnings


def validate_tool(tool: ToolDefinition) -> ValidationResult:
    result = ValidationResult(tool_name=tool.name)

    if len(tool.name) > MAX_NAME_LENGTH:
        result.errors.append(
            f"Tool name exceeds {MAX_NAME_LENGTH} characters ({len(tool.name)} chars): '{tool.name}'"
        )
    if not _NAME_RE.match(tool.name):
        result.errors.append(f"Tool name contains invalid characters: '{tool.name}'")

    errors, warnings = _schema_issues(tool.input_schema.to_dict())
    result.errors.extend(errors)
    result.warnings.extend(warnings)

    output_type = tool.output_schema.to_dict().get("type")
    if output_type is not None and output_type != "object":
        result.errors.append(f"Output schema type must be 'object', found '{output_type}'")

    return result


def validate_all(tools: Iterable[ToolDefinition]) -> CompatibilityReport:
    return CompatibilityReport([validate_tool(tool) for tool in tools])
