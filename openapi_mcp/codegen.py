"""Render an adjustment document listing every registered route.

The output is a starting point for hand-editing: delete routes to hide
them, edit descriptions to override them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import jinja2

from .registry import Registry

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


def build_context(registry: Registry) -> dict[str, Any]:
    """Group registered tools by path, keeping registry order."""
    routes: dict[str, dict[str, Any]] = {}
    for tool in registry:
        route = routes.setdefault(tool.route.path, {"path": tool.route.path, "methods": [], "updates": []})
        route["methods"].append(tool.route.method)
        route["updates"].append({"method": tool.route.method, "description": tool.definition.description})
    return {
        "title": registry.title,
        "tool_count": len(registry),
        "routes": list(routes.values()),
    }


def render_adjustments(registry: Registry) -> str:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template("adjustments.yaml.j2")
    return template.render(**build_context(registry))


def generate(registry: Registry, output_path: Path | str) -> Path:
    """Render the scaffold and write it to output_path."""
    output = render_adjustments(registry)
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(output, encoding="utf-8")
    logger.info("Generated %s (%d tools)", path, len(registry))
    return path
