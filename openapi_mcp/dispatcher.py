"""Execute a tool call by rebuilding the HTTP request from its arguments.

Arguments arrive as one flat mapping. Path placeholders are substituted,
declared query/header/cookie parameters are routed to their place, and for
POST/PUT/PATCH whatever is left becomes the request body. Any status code the
backend returns is passed through as an HttpResponse; only failures to build
or transport the request come back as DispatchError.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, Mapping
from urllib.parse import quote

import httpx

from .errors import DispatchError, DispatchErrorKind
from .models import BODY_METHODS, HttpResponse, RouteTemplate

if TYPE_CHECKING:
    from .registry import Registry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _query_value(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_stringify(v) for v in value]
    return _stringify(value)


def substitute_path(path: str, arguments: Mapping[str, Any]) -> str | DispatchError:
    """Replace every {name} placeholder with its URL-encoded argument."""
    def _missing(name: str) -> DispatchError:
        return DispatchError(
            DispatchErrorKind.MISSING_PATH_PARAMETER,
            f"missing value for path parameter '{name}'",
            parameter=name,
        )

    for name in _PLACEHOLDER_RE.findall(path):
        if arguments.get(name) is None:
            return _missing(name)
    return _PLACEHOLDER_RE.sub(lambda m: quote(_stringify(arguments[m.group(1)]), safe=""), path)


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            logger.debug("Response declared %s but is not valid JSON", content_type)
    return response.text


def _body_kwargs(route: RouteTemplate, payload: Any) -> dict[str, Any]:
    """httpx keyword arguments serializing payload for the route's content type."""
    content_type = route.content_type or "application/json"
    if content_type == "application/json" or content_type.endswith("+json"):
        kwargs: dict[str, Any] = {"json": payload}
        if content_type != "application/json":
            kwargs["headers"] = {"content-type": content_type}
        return kwargs
    if content_type == "application/x-www-form-urlencoded" and isinstance(payload, dict):
        return {"data": {k: _stringify(v) for k, v in payload.items()}}
    if content_type == "multipart/form-data" and isinstance(payload, dict):
        return {"files": {k: (None, _stringify(v)) for k, v in payload.items()}}
    if isinstance(payload, (str, bytes)):
        content = payload
    else:
        content = json.dumps(payload)
    return {"content": content, "headers": {"content-type": content_type}}


class RequestDispatcher:
    """Issues tool calls against a backend.

    Holds one pooled httpx.AsyncClient, safe to share between concurrent
    calls. Nothing else is kept between calls.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> RequestDispatcher:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_request(
        self, route: RouteTemplate, base_url: str, arguments: Mapping[str, Any],
    ) -> httpx.Request | DispatchError:
        """Turn arguments into a request without sending it."""
        arguments = dict(arguments or {})
        path = substitute_path(route.path, arguments)
        if isinstance(path, DispatchError):
            return path

        body_fields = set(route.body_fields)
        consumed = set(_PLACEHOLDER_RE.findall(route.path))
        query: dict[str, Any] = {}
        headers = {**self.headers, **route.headers}
        if route.accept:
            headers.setdefault("accept", route.accept)
        cookies: dict[str, str] = {}

        for param in route.parameters:
            if param.location == "path":
                continue
            if param.name in body_fields and not route.raw_body:
                # Shadowed by a body field of the same name
                continue
            consumed.add(param.name)
            value = arguments.get(param.name)
            if value is None:
                if param.required:
                    return DispatchError(
                        DispatchErrorKind.MISSING_REQUIRED_PARAMETER,
                        f"missing value for required {param.location} parameter '{param.name}'",
                        parameter=param.name,
                    )
                continue
            if param.location == "query":
                query[param.name] = _query_value(value)
            elif param.location == "header":
                headers[param.name] = _stringify(value)
            elif param.location == "cookie":
                cookies[param.name] = _stringify(value)

        body_kwargs: dict[str, Any] = {}
        if route.method in BODY_METHODS:
            if route.raw_body:
                payload = arguments.get("body")
                has_payload = payload is not None
            else:
                payload = {k: v for k, v in arguments.items() if k not in consumed or k in body_fields}
                has_payload = bool(payload)
            if has_payload:
                body_kwargs = _body_kwargs(route, payload)
                headers.update(body_kwargs.pop("headers", {}))

        if cookies:
            headers["cookie"] = "; ".join(f"{k}={v}" for k, v in cookies.items())

        url = base_url.rstrip("/") + path
        try:
            return self._client.build_request(
                route.method,
                url,
                params=query or None,
                headers=headers,
                timeout=self.timeout,
                **body_kwargs,
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return DispatchError(DispatchErrorKind.TRANSPORT, f"invalid URL {url!r}: {e}", cause=e)

    async def execute(
        self, route: RouteTemplate, base_url: str, arguments: Mapping[str, Any],
    ) -> HttpResponse | DispatchError:
        """Build and send one request; never retries."""
        request = self.build_request(route, base_url, arguments)
        if isinstance(request, DispatchError):
            logger.info("Cannot build %s %s: %s", route.method, route.path, request)
            return request

        logger.info("Executing request: %s %s", request.method, request.url)
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as e:
            logger.warning("Request %s %s failed: %s", request.method, request.url, e)
            return DispatchError(
                DispatchErrorKind.TRANSPORT,
                f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                cause=e,
            )

        return HttpResponse(
            status_code=response.status_code,
            body=_decode_body(response),
            headers={k.lower(): v for k, v in response.headers.items()},
        )

    async def invoke(
        self,
        registry: Registry,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        base_url: str | None = None,
    ) -> HttpResponse | DispatchError:
        """Look a tool up by name in a registry snapshot and execute it.

        base_url defaults to the first server declared by the document.
        """
        tool = registry.get(name)
        if tool is None:
            return DispatchError(DispatchErrorKind.UNKNOWN_TOOL, f"unknown tool '{name}'")
        return await self.execute(tool.route, base_url or registry.default_base_url, arguments or {})
