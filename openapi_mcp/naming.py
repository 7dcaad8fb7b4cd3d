"""Convert HTTP method + path to tool names.

Pattern: {path segments}_{method}, lower-cased
  - placeholders lose their braces and count as ordinary segments
  - separators and other punctuation collapse to a single underscore

Examples:
  GET    /todos               -> todos_get
  GET    /todos/{id}          -> todos_id_get
  DELETE /tasks/{task_id}     -> tasks_task_id_delete
  POST   /v1/user-profiles    -> v1_user_profiles_post
  GET    /                    -> root_get
"""

from __future__ import annotations

import re

DELIMITER = "_"


def _sanitize_segment(segment: str) -> str:
    """Lower-case a path segment and collapse everything non-alphanumeric."""
    name = segment.strip("{}").lower()
    name = re.sub(r"[^a-z0-9]+", DELIMITER, name)
    return name.strip(DELIMITER)


def _extract_path_parts(path: str) -> list[str]:
    parts = [_sanitize_segment(p) for p in path.split("/")]
    return [p for p in parts if p]


def build_tool_name(method: str, path: str) -> str:
    """Build a tool name from HTTP method and path.

    Deterministic: the same (method, path) always yields the same name.
    Distinct routes may still collide (`/todos/{id}` and `/todos/id`); the
    registry keeps the first one.
    """
    parts = _extract_path_parts(path) or ["root"]
    return DELIMITER.join([*parts, method.lower()])
