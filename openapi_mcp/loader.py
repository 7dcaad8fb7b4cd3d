"""Load and parse an OpenAPI 3 / Swagger 2 document.

parse() is pure: it takes bytes the caller already read and returns a
SpecDocument whose operations have every $ref resolved. load_spec() is the
thin file-reading helper around it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from .errors import MalformedDocument, UnsupportedFormat
from .models import HTTP_METHODS, PARAMETER_LOCATIONS, Operation, Parameter, SpecDocument

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
}

# Swagger 2 parameter fields that belong in a JSON schema
_SWAGGER2_SCHEMA_KEYS = (
    "type", "format", "items", "enum", "default", "minimum", "maximum",
    "minLength", "maxLength", "pattern", "collectionFormat",
)

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def detect_format(format_hint: str | None) -> str | None:
    """Map a file name, extension or explicit format name to 'json' / 'yaml'."""
    if not format_hint:
        return None
    hint = format_hint.lower()
    if hint in ("json", "yaml"):
        return hint
    if hint == "yml":
        return "yaml"
    suffix = hint if hint.startswith(".") and "/" not in hint else Path(hint).suffix
    return _EXTENSIONS.get(suffix)


def _decode(data: bytes | str, fmt: str | None) -> Any:
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise UnsupportedFormat(f"document is not UTF-8 text: {e}") from e
    else:
        text = data

    if fmt is None:
        # Sniff: JSON documents start with a brace or bracket
        fmt = "json" if text.lstrip()[:1] in ("{", "[") else "yaml"
    order = ("json", "yaml") if fmt == "json" else ("yaml", "json")

    errors = []
    for candidate in order:
        try:
            if candidate == "json":
                return json.loads(text)
            return yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            errors.append(f"{candidate}: {e}")
    raise UnsupportedFormat("document is neither JSON nor YAML (" + "; ".join(errors) + ")")


def resolve_ref(doc: dict[str, Any], ref: str) -> Any:
    """Resolve a local $ref pointer such as '#/components/schemas/Todo'."""
    if not ref.startswith("#/"):
        raise MalformedDocument(f"only local references are supported: {ref!r}")
    node: Any = doc
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            raise MalformedDocument(f"unresolvable reference {ref!r}")
    return node


def deref(doc: dict[str, Any], node: Any, _stack: tuple[str, ...] = ()) -> Any:
    """Return a copy of node with every $ref inlined.

    A reference back into one of its own ancestors becomes an empty (opaque)
    schema.
    """
    if isinstance(node, list):
        return [deref(doc, item, _stack) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node and isinstance(node["$ref"], str):
        ref = node["$ref"]
        if ref in _stack:
            logger.debug("Recursive reference %s left opaque", ref)
            return {"description": f"Recursive reference to {ref.rsplit('/', 1)[-1]}"}
        target = deref(doc, resolve_ref(doc, ref), _stack + (ref,))
        # Sibling keywords next to $ref (description etc.) are kept
        siblings = {k: deref(doc, v, _stack) for k, v in node.items() if k != "$ref"}
        if isinstance(target, dict):
            return {**target, **siblings}
        return target

    return {key: deref(doc, value, _stack) for key, value in node.items()}


def _servers(doc: dict[str, Any]) -> tuple[str, ...]:
    if "swagger" in doc:
        host = doc.get("host")
        if not host:
            return ()
        scheme = (doc.get("schemes") or ["https"])[0]
        return (f"{scheme}://{host}{doc.get('basePath', '')}".rstrip("/"),)
    urls = []
    for server in doc.get("servers") or []:
        if isinstance(server, dict) and server.get("url"):
            url = server["url"]
            for var, spec in (server.get("variables") or {}).items():
                if isinstance(spec, dict) and "default" in spec:
                    url = url.replace("{" + var + "}", str(spec["default"]))
            urls.append(url.rstrip("/"))
    return tuple(urls)


def _merge_parameters(shared: list[Any], own: list[Any]) -> list[dict[str, Any]]:
    """Path-item parameters, overridden by operation parameters with the same (name, in)."""
    merged: dict[tuple[str, str], dict[str, Any]] = {}
    for param in [*shared, *own]:
        if not isinstance(param, dict) or "name" not in param:
            continue
        merged[(param["name"], param.get("in", "query"))] = param
    return list(merged.values())


def _swagger2_schema(param: dict[str, Any]) -> dict[str, Any]:
    return {k: param[k] for k in _SWAGGER2_SCHEMA_KEYS if k in param}


def _build_parameters(
    params: list[dict[str, Any]], swagger2: bool,
) -> tuple[tuple[Parameter, ...], list[dict[str, Any]], list[dict[str, Any]]]:
    """Split raw parameters into real parameters, Swagger 2 body and formData ones."""
    result: list[Parameter] = []
    body: list[dict[str, Any]] = []
    form: list[dict[str, Any]] = []
    for param in params:
        location = param.get("in", "query")
        if location == "body":
            body.append(param)
            continue
        if location == "formData":
            form.append(param)
            continue
        if location not in PARAMETER_LOCATIONS:
            logger.warning("Ignoring parameter %r with unknown location %r", param["name"], location)
            continue
        schema = param.get("schema")
        if schema is None and swagger2:
            schema = _swagger2_schema(param)
        result.append(
            Parameter(
                name=str(param["name"]),
                location=location,
                required=bool(param.get("required", location == "path")),
                schema=dict(schema or {}),
                description=param.get("description", "") or "",
            )
        )
    return tuple(result), body, form


def _content_schemas(content: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(content, dict):
        return {}
    return {
        str(ct): dict((media or {}).get("schema") or {})
        for ct, media in content.items()
        if isinstance(media, dict) or media is None
    }


def _request_body(
    doc: dict[str, Any],
    operation: dict[str, Any],
    body_params: list[dict[str, Any]],
    form_params: list[dict[str, Any]],
) -> tuple[dict[str, dict[str, Any]] | None, bool]:
    if "swagger" not in doc:
        request_body = operation.get("requestBody")
        if not isinstance(request_body, dict):
            return None, False
        return _content_schemas(request_body.get("content")), bool(request_body.get("required", False))

    consumes = operation.get("consumes") or doc.get("consumes") or ["application/json"]
    if body_params:
        param = body_params[0]
        schema = dict(param.get("schema") or {})
        return {ct: schema for ct in consumes}, bool(param.get("required", False))
    if form_params:
        properties = {p["name"]: _swagger2_schema(p) for p in form_params}
        for p in form_params:
            if p.get("description"):
                properties[p["name"]]["description"] = p["description"]
        schema: dict[str, Any] = {"type": "object", "properties": properties}
        required = [p["name"] for p in form_params if p.get("required")]
        if required:
            schema["required"] = required
        form_types = [ct for ct in consumes if ct in _FORM_CONTENT_TYPES] or [_FORM_CONTENT_TYPES[0]]
        return {ct: schema for ct in form_types}, bool(required)
    return None, False


def _responses(doc: dict[str, Any], operation: dict[str, Any]) -> dict[str, dict[str, dict[str, Any]]]:
    responses = operation.get("responses") or {}
    result: dict[str, dict[str, dict[str, Any]]] = {}
    swagger2 = "swagger" in doc
    produces = operation.get("produces") or doc.get("produces") or ["application/json"]
    for status, response in responses.items():
        if not isinstance(response, dict):
            continue
        if swagger2:
            schema = response.get("schema")
            result[str(status)] = {ct: dict(schema) for ct in produces} if schema else {}
        else:
            result[str(status)] = _content_schemas(response.get("content"))
    return result


def _build_operation(
    doc: dict[str, Any], operation: dict[str, Any], shared: list[Any],
) -> Operation:
    swagger2 = "swagger" in doc
    raw_params = _merge_parameters(shared, operation.get("parameters") or [])
    parameters, body_params, form_params = _build_parameters(raw_params, swagger2)
    request_body, body_required = _request_body(doc, operation, body_params, form_params)
    return Operation(
        summary=(operation.get("summary") or "").strip(),
        description=(operation.get("description") or "").strip(),
        operation_id=operation.get("operationId") or "",
        parameters=parameters,
        request_body=request_body,
        body_required=body_required,
        responses=_responses(doc, operation),
    )


def parse(data: bytes | str, format_hint: str | None = None) -> SpecDocument:
    """Parse specification bytes into a SpecDocument.

    format_hint may be a file name, an extension or 'json' / 'yaml'; without
    one the content is sniffed. Raises UnsupportedFormat when the bytes are
    neither JSON nor YAML and MalformedDocument when there is no `paths`
    object.
    """
    raw = _decode(data, detect_format(format_hint))
    if not isinstance(raw, dict):
        raise MalformedDocument("top level of the document must be a mapping")
    if not isinstance(raw.get("paths"), dict):
        raise MalformedDocument("document has no 'paths' object")

    paths: dict[str, dict[str, Operation]] = {}
    for path, path_item in raw["paths"].items():
        if not isinstance(path_item, dict):
            logger.warning("Skipping path %s: path item is not a mapping", path)
            continue
        path_item = deref(raw, path_item)
        shared = path_item.get("parameters") or []
        operations: dict[str, Operation] = {}
        for method, operation in path_item.items():
            if method.lower() not in HTTP_METHODS or not isinstance(operation, dict):
                continue
            operations[method.lower()] = _build_operation(raw, operation, shared)
        paths[str(path)] = operations

    info = raw.get("info") or {}
    document = SpecDocument(
        paths=paths,
        title=str(info.get("title", "")),
        version=str(info.get("version", "")),
        servers=_servers(raw),
    )
    logger.info(
        "Parsed %s with %d paths and %d operations",
        document.title or "specification",
        len(paths),
        sum(len(ops) for ops in paths.values()),
    )
    return document


def load_spec(path: Path | str) -> SpecDocument:
    """Read a specification file and parse it, using its extension as the format hint."""
    spec_file = Path(path)
    logger.info("Loading specification from %s", spec_file)
    return parse(spec_file.read_bytes(), spec_file.name)
