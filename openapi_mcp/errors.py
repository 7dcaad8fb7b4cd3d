"""Error taxonomy.

Load-time problems are raised (the process must not start with a partial
registry). Dispatch-time problems are returned as DispatchError values so the
calling transport can shape its own error response.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class OpenApiMcpError(Exception):
    """Base class for all raised errors."""


class ParseError(OpenApiMcpError):
    """A specification or adjustment document could not be used."""


class UnsupportedFormat(ParseError):
    """The bytes are neither JSON nor YAML."""


class MalformedDocument(ParseError):
    """The document parsed but its shape is wrong."""


class ConfigError(OpenApiMcpError):
    """Invalid settings."""


class DispatchErrorKind(str, Enum):
    MISSING_PATH_PARAMETER = "MissingPathParameter"
    MISSING_REQUIRED_PARAMETER = "MissingRequiredParameter"
    TRANSPORT = "Transport"
    UNKNOWN_TOOL = "UnknownTool"


@dataclass(frozen=True)
class DispatchError:
    kind: DispatchErrorKind
    message: str
    parameter: str | None = None
    cause: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error": self.kind.value, "message": self.message}
        if self.parameter is not None:
            result["parameter"] = self.parameter
        return result

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class NamingCollision:
    """Two operations normalized to the same tool name; the later one was dropped."""

    name: str
    kept: str  # "GET /todos/{id}"
    dropped: str

    def __str__(self) -> str:
        return f"tool name {self.name!r} from {self.dropped} collides with {self.kept}; dropped"
