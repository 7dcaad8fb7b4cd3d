"""Adjustment document: which routes become tools, and what describes them.

Example document::

    routes:
      - path: /todos/*
        methods: [GET, POST]
      - path: /health
        methods: "*"
    descriptions:
      - path: /todos/{id}
        updates:
          - method: GET
            new_description: Fetch one todo item

An absent or empty `routes` list allows every route. Patterns use `*` as a
wildcard and are compiled once, when the document is loaded.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import MalformedDocument

logger = logging.getLogger(__name__)

ANY_METHOD = "*"


def _normalize_path(path: str) -> str:
    """Trailing slashes never matter when matching."""
    return path.rstrip("/") or "/"


@dataclass(frozen=True)
class PathPattern:
    """A wildcard path pattern compiled to an anchored regular expression."""

    source: str
    regex: re.Pattern[str]

    @classmethod
    def compile(cls, source: str) -> PathPattern:
        pieces = _normalize_path(source).split("*")
        return cls(source, re.compile("^" + ".*".join(re.escape(p) for p in pieces) + "$"))

    def matches(self, path: str) -> bool:
        return self.regex.match(_normalize_path(path)) is not None


@dataclass(frozen=True)
class RouteRule:
    pattern: PathPattern
    # Upper-case methods, or None for any method
    methods: frozenset[str] | None = None

    def allows_method(self, method: str) -> bool:
        return self.methods is None or method.upper() in self.methods


@dataclass(frozen=True)
class DescriptionRule:
    pattern: PathPattern
    # Upper-case method -> replacement description
    overrides: dict[str, str]


@dataclass(frozen=True)
class AdjustmentSet:
    routes: tuple[RouteRule, ...] = ()
    descriptions: tuple[DescriptionRule, ...] = ()


EMPTY_ADJUSTMENTS = AdjustmentSet()


def _parse_methods(raw: Any, where: str) -> frozenset[str] | None:
    if raw is None or raw == ANY_METHOD:
        return None
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not all(isinstance(m, str) for m in raw):
        raise MalformedDocument(f"{where}: 'methods' must be '*' or a list of method names")
    methods = frozenset(m.strip().upper() for m in raw)
    if not methods or ANY_METHOD in methods:
        return None
    return methods


def _require_path(entry: Any, where: str) -> str:
    if not isinstance(entry, dict):
        raise MalformedDocument(f"{where}: entry must be a mapping")
    path = entry.get("path")
    if not isinstance(path, str) or not path:
        raise MalformedDocument(f"{where}: 'path' must be a non-empty string")
    return path


def _parse_routes(raw: Any) -> tuple[RouteRule, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise MalformedDocument("'routes' must be a list")
    rules = []
    for index, entry in enumerate(raw):
        where = f"routes[{index}]"
        path = _require_path(entry, where)
        rules.append(RouteRule(PathPattern.compile(path), _parse_methods(entry.get("methods"), where)))
    return tuple(rules)


def _parse_updates(raw: Any, where: str) -> dict[str, str]:
    # Either a list of {method, new_description} or a plain {METHOD: text} mapping
    if isinstance(raw, dict):
        return {str(m).upper(): str(text) for m, text in raw.items()}
    if not isinstance(raw, list):
        raise MalformedDocument(f"{where}: 'updates' must be a list")
    overrides: dict[str, str] = {}
    for index, update in enumerate(raw):
        if not isinstance(update, dict) or "method" not in update or "new_description" not in update:
            raise MalformedDocument(f"{where}.updates[{index}]: needs 'method' and 'new_description'")
        # First declaration of a method wins
        overrides.setdefault(str(update["method"]).upper(), str(update["new_description"]))
    return overrides


def _parse_descriptions(raw: Any) -> tuple[DescriptionRule, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise MalformedDocument("'descriptions' must be a list")
    rules = []
    for index, entry in enumerate(raw):
        where = f"descriptions[{index}]"
        path = _require_path(entry, where)
        # An empty `updates:` means no overrides
        overrides = _parse_updates(entry.get("updates") or [], where)
        rules.append(DescriptionRule(PathPattern.compile(path), overrides))
    return tuple(rules)


def parse_adjustments(data: bytes | str | None) -> AdjustmentSet:
    """Parse an adjustment document. None or blank input allows everything."""
    if data is None:
        return EMPTY_ADJUSTMENTS
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise MalformedDocument(f"adjustment document is not UTF-8 text: {e}") from e
    if not data.strip():
        return EMPTY_ADJUSTMENTS

    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise MalformedDocument(f"adjustment document is not valid YAML: {e}") from e
    if raw is None:
        return EMPTY_ADJUSTMENTS
    if not isinstance(raw, dict):
        raise MalformedDocument("top level of the adjustment document must be a mapping")

    adjustments = AdjustmentSet(
        routes=_parse_routes(raw.get("routes")),
        descriptions=_parse_descriptions(raw.get("descriptions")),
    )
    logger.info(
        "Loaded adjustments: %d route selections, %d description overrides",
        len(adjustments.routes),
        len(adjustments.descriptions),
    )
    return adjustments


def load_adjustments(path: Path | str | None) -> AdjustmentSet:
    """Read an adjustment file. A missing file is logged and treated as absent."""
    if not path:
        logger.info("No adjustments file provided")
        return EMPTY_ADJUSTMENTS
    adjustments_file = Path(path)
    if not adjustments_file.exists():
        logger.warning("Adjustments file not found: %s", adjustments_file)
        return EMPTY_ADJUSTMENTS
    logger.info("Loading adjustments from %s", adjustments_file)
    return parse_adjustments(adjustments_file.read_bytes())


def permits(path: str, method: str, adjustments: AdjustmentSet) -> bool:
    """Return True if (path, method) is selected by the allow-list."""
    if not adjustments.routes:
        return True
    for rule in adjustments.routes:
        if rule.pattern.matches(path) and rule.allows_method(method):
            logger.debug("Route %s %s selected by %r", method.upper(), path, rule.pattern.source)
            return True
    logger.debug("Route %s %s not selected", method.upper(), path)
    return False


def resolve_description(path: str, method: str, summary: str, adjustments: AdjustmentSet) -> str:
    """Pick the override for the first matching description entry, else the summary."""
    for rule in adjustments.descriptions:
        if rule.pattern.matches(path):
            override = rule.overrides.get(method.upper())
            if override is not None:
                return override
            break
    if summary:
        return summary
    return f"{method.upper()} {path}"
