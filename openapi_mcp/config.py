"""Settings consumed by the CLI: where the documents live and how to reach the backend.

Precedence: explicit overrides > OPENAPI_MCP_* environment variables >
optional YAML config file > defaults.

Config file shape::

    spec_file: ./openapi.yaml
    adjustments_file: ./adjustments.yaml
    endpoint:
      base_url: https://api.example.com
      headers:
        Authorization: Bearer xyz
    server:
      timeout: 30s
    logging:
      level: INFO
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from .dispatcher import DEFAULT_TIMEOUT
from .errors import ConfigError

ENV_PREFIX = "OPENAPI_MCP_"


@dataclass(frozen=True)
class Settings:
    spec_file: str | None = None
    adjustments_file: str | None = None
    base_url: str = ""
    timeout: float = DEFAULT_TIMEOUT
    headers: dict[str, str] = field(default_factory=dict)
    log_level: str = "INFO"


def parse_timeout(value: Any) -> float:
    """Accept 30, 30.0, "30" or "30s"."""
    text = str(value).strip().lower()
    if text.endswith("s"):
        text = text[:-1]
    try:
        timeout = float(text)
    except ValueError as e:
        raise ConfigError(f"invalid timeout {value!r}") from e
    if timeout <= 0:
        raise ConfigError(f"timeout must be positive, got {value!r}")
    return timeout


def parse_headers(value: str) -> dict[str, str]:
    """Parse 'Name=value;Other=value' into a header mapping."""
    headers: dict[str, str] = {}
    for item in value.split(";"):
        if not item.strip():
            continue
        name, sep, header_value = item.partition("=")
        if not sep or not name.strip():
            raise ConfigError(f"invalid header entry {item!r}, expected Name=value")
        headers[name.strip()] = header_value.strip()
    return headers


def _from_file(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"config file {path} is not valid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    endpoint = raw.get("endpoint") or {}
    values: dict[str, Any] = {
        "spec_file": raw.get("spec_file") or raw.get("swagger_file"),
        "adjustments_file": raw.get("adjustments_file"),
        "base_url": endpoint.get("base_url"),
        "headers": endpoint.get("headers"),
        "timeout": (raw.get("server") or {}).get("timeout"),
        "log_level": (raw.get("logging") or {}).get("level"),
    }
    return {k: v for k, v in values.items() if v is not None}


def _from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in ("spec_file", "adjustments_file", "base_url", "timeout", "headers", "log_level"):
        value = environ.get(ENV_PREFIX + name.upper())
        if value:
            values[name] = parse_headers(value) if name == "headers" else value
    return values


def load_settings(
    config_file: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> Settings:
    """Assemble Settings from file, environment and keyword overrides."""
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    if config_file:
        path = Path(config_file)
        if not path.exists():
            raise ConfigError(f"config file not found: {path}")
        values.update(_from_file(path))
    values.update(_from_env(environ))
    values.update({k: v for k, v in overrides.items() if v is not None})

    unknown = set(values) - set(Settings.__dataclass_fields__)
    if unknown:
        raise ConfigError(f"unknown settings: {', '.join(sorted(unknown))}")

    if "timeout" in values:
        values["timeout"] = parse_timeout(values["timeout"])
    if "headers" in values:
        if not isinstance(values["headers"], dict):
            raise ConfigError("headers must be a mapping")
        values["headers"] = {str(k): str(v) for k, v in values["headers"].items()}
    if "log_level" in values:
        values["log_level"] = str(values["log_level"]).upper()
    return replace(Settings(), **values)
