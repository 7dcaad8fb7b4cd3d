"""CLI entry point for openapi-mcp."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from .adjustments import load_adjustments
from .codegen import generate
from .config import Settings, load_settings
from .dispatcher import RequestDispatcher
from .errors import ConfigError, DispatchError, OpenApiMcpError
from .loader import load_spec
from .logger import configure_logging
from .registry import Registry, build_registry
from .validator import validate_all


def _build(settings: Settings) -> Registry:
    if not settings.spec_file:
        raise click.UsageError("a specification file is required (--spec or OPENAPI_MCP_SPEC_FILE)")
    try:
        spec = load_spec(settings.spec_file)
        adjustments = load_adjustments(settings.adjustments_file)
    except (OSError, OpenApiMcpError) as e:
        raise click.ClickException(str(e)) from e
    return build_registry(spec, adjustments)


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


@click.group()
@click.option("--config", "config_file", type=click.Path(path_type=Path), default=None, help="YAML config file.")
@click.option("--spec", "spec_file", default=None, help="OpenAPI/Swagger document (JSON or YAML).")
@click.option("--adjustments", "adjustments_file", default=None, help="Adjustment document (YAML).")
@click.option("--base-url", default=None, help="Backend base URL; defaults to the document's first server.")
@click.option("--timeout", default=None, help="Per-request timeout in seconds.")
@click.option("--log-level", default=None, type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def main(ctx, config_file, spec_file, adjustments_file, base_url, timeout, log_level):
    """Expose an OpenAPI document as callable tools."""
    try:
        settings = load_settings(
            config_file,
            spec_file=spec_file,
            adjustments_file=adjustments_file,
            base_url=base_url,
            timeout=timeout,
            log_level=log_level,
        )
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    configure_logging(settings.log_level)
    ctx.obj = settings


@main.command()
@click.pass_obj
def tools(settings: Settings):
    """Print the tool listing as JSON."""
    registry = _build(settings)
    _echo_json(registry.list_tools())


@main.command()
@click.option("-o", "--output", required=True, type=click.Path(path_type=Path), help="Where to write the adjustment document.")
@click.pass_obj
def scaffold(settings: Settings, output: Path):
    """Write an editable adjustment document covering every tool."""
    registry = _build(settings)
    path = generate(registry, output)
    click.echo(f"Wrote {len(registry)} tools to {path}")


@main.command()
@click.pass_obj
def validate(settings: Settings):
    """Check tools against strict client rules; exit 1 if any is invalid."""
    registry = _build(settings)
    report = validate_all(tool.definition for tool in registry)
    _echo_json(report.to_dict())
    if report.invalid_tools:
        raise SystemExit(1)


@main.command()
@click.argument("tool_name")
@click.option("--args", "args_json", default="{}", help="Tool arguments as a JSON object.")
@click.pass_obj
def call(settings: Settings, tool_name: str, args_json: str):
    """Dispatch one tool and print the response."""
    try:
        arguments = json.loads(args_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--args") from e
    if not isinstance(arguments, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--args")

    registry = _build(settings)

    async def _run():
        async with RequestDispatcher(timeout=settings.timeout, headers=settings.headers) as dispatcher:
            return await dispatcher.invoke(registry, tool_name, arguments, settings.base_url or None)

    result = asyncio.run(_run())
    _echo_json(result.to_dict())
    if isinstance(result, DispatchError):
        raise SystemExit(1)
