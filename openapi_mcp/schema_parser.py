"""Derive the input and output schema of one operation.

Handles:
- Path, query, header and cookie parameters, tagged with their location
- Request body (object bodies are flattened into the same namespace)
- Content type priority: application/json, then text/plain, then first declared
- allOf composition
- readOnly field exclusion from inputs
- Large integer default sanitization (>= 2^53)
- Primary success response selection for outputs

Body fields win over parameters of the same name (last merged wins). That is
a trap for document authors, not something this module tries to repair.
"""

from __future__ import annotations

import copy
import re
from typing import Any

from .models import LOCATION_KEY, ObjectSchema, OpaqueSchema, Operation, Schema

CONTENT_TYPE_PRIORITY = ("application/json", "text/plain")

# Property name used when the request body is not an object
RAW_BODY_FIELD = "body"

# Sentinel: integers >= 2^53 are unsafe for JSON serialization
MAX_SAFE_INT = 2**53


def _strip_html(text: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def _sanitize_default(value: Any) -> Any:
    """Unsafe large integers become None."""
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) >= MAX_SAFE_INT:
        return None
    return value


def select_content_type(content: dict[str, Any] | None) -> str | None:
    """Pick the representative content type of a body or response."""
    if not content:
        return None
    for ct in CONTENT_TYPE_PRIORITY:
        if ct in content:
            return ct
    return next(iter(content))


def select_success_status(responses: dict[str, Any]) -> str | None:
    """200 if declared, else the lowest 2xx code, else None."""
    if "200" in responses:
        return "200"
    codes = sorted(code for code in responses if code.isdigit() and 200 <= int(code) < 300)
    return codes[0] if codes else None


def is_object_schema(schema: dict[str, Any]) -> bool:
    if schema.get("type") == "object" or "properties" in schema:
        return True
    parts = schema.get("allOf")
    return bool(parts) and all(isinstance(p, dict) and is_object_schema(p) for p in parts)


def _merge_all_of(schema: dict[str, Any]) -> dict[str, Any]:
    """Fold allOf members into one object schema."""
    if "allOf" not in schema:
        return schema
    merged_props: dict[str, Any] = dict(schema.get("properties", {}))
    merged_required: list[str] = list(schema.get("required", []))
    for sub in schema["allOf"]:
        sub = _merge_all_of(sub)
        merged_props.update(sub.get("properties", {}))
        merged_required.extend(r for r in sub.get("required", []) if r not in merged_required)
    return {"type": "object", "properties": merged_props, "required": merged_required}


def _clean_property(schema: dict[str, Any], description: str = "") -> dict[str, Any]:
    prop = copy.deepcopy(schema)
    if description and not prop.get("description"):
        prop["description"] = description
    if prop.get("description"):
        prop["description"] = _strip_html(str(prop["description"]))
    elif "description" in prop:
        del prop["description"]
    if "default" in prop:
        prop["default"] = _sanitize_default(prop["default"])
        if prop["default"] is None:
            del prop["default"]
    return prop


def flatten_object_schema(
    schema: dict[str, Any], *, skip_read_only: bool = False,
) -> tuple[dict[str, dict[str, Any]], list[str]]:
    """Return (properties, required names) of an object schema."""
    schema = _merge_all_of(schema)
    properties: dict[str, dict[str, Any]] = {}
    for name, prop in (schema.get("properties") or {}).items():
        if not isinstance(prop, dict):
            prop = {}
        if skip_read_only and prop.get("readOnly", False):
            continue
        properties[str(name)] = _clean_property(prop)
    required = [r for r in schema.get("required", []) if r in properties]
    return properties, required


def request_body_layout(operation: Operation) -> tuple[str | None, dict[str, Any] | None]:
    """The (content type, schema) a request body is built from, or (None, None)."""
    content_type = select_content_type(operation.request_body)
    if content_type is None:
        return None, None
    return content_type, operation.request_body[content_type]


def build_input(operation: Operation) -> ObjectSchema:
    """Merge parameters and the request body into one flat object schema."""
    properties: dict[str, dict[str, Any]] = {}
    required: list[str] = []

    for param in operation.parameters:
        prop = _clean_property(param.schema or {"type": "string"}, param.description)
        prop[LOCATION_KEY] = param.location
        properties[param.name] = prop
        if param.required:
            required.append(param.name)

    _, body_schema = request_body_layout(operation)
    if body_schema is not None:
        if is_object_schema(body_schema):
            body_props, body_required = flatten_object_schema(body_schema, skip_read_only=True)
        else:
            body_props = {RAW_BODY_FIELD: _clean_property(body_schema)}
            body_required = [RAW_BODY_FIELD] if operation.body_required else []
        for name, prop in body_props.items():
            prop[LOCATION_KEY] = "body"
            # Body field replaces any parameter of the same name
            properties.pop(name, None)
            properties[name] = prop
            if name in required:
                required.remove(name)
        required.extend(r for r in body_required if r not in required)

    return ObjectSchema(properties=properties, required=tuple(required))


def build_output(operation: Operation) -> Schema:
    """Schema of the primary success response; empty when there is none."""
    status = select_success_status(operation.responses)
    if status is None:
        return OpaqueSchema()
    content = operation.responses[status]
    content_type = select_content_type(content)
    if content_type is None or not content[content_type]:
        return OpaqueSchema()

    schema = content[content_type]
    if is_object_schema(schema):
        properties, required = flatten_object_schema(schema)
        return ObjectSchema(properties=properties, required=tuple(required))
    return OpaqueSchema(_clean_property(schema))
