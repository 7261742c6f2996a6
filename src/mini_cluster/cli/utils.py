"""CLI utilities for output formatting and common functionality."""

import json
import sys
from typing import Any

import click

from ..config.loader import ClusterConfig, load_config


def output_json(data: dict[str, Any]) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


def output_table(headers: list[str], rows: list[list[str]]) -> None:
    """Output rows as a left-aligned table under a header line."""
    if not rows:
        click.echo("No processes")
        return

    widths = [
        max(len(str(cell)) for cell in column) for column in zip(headers, *rows)
    ]

    def render(cells: list[str]) -> str:
        return " | ".join(str(cell).ljust(width) for cell, width in zip(cells, widths))

    header = render(headers)
    click.echo(header)
    click.echo("-" * len(header))
    for row in rows:
        click.echo(render(row))


def handle_error(message: str, exit_code: int = 1) -> None:
    """Print a red error message and exit."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(exit_code)


def verbose_echo(ctx: click.Context, message: str) -> None:
    """Echo message only if verbose mode is enabled."""
    if ctx.obj and ctx.obj.get("verbose"):
        click.echo(click.style(f"[VERBOSE] {message}", fg="blue"), err=True)


def quiet_echo(ctx: click.Context, message: str) -> None:
    """Echo message only if not in quiet mode."""
    if not (ctx.obj and ctx.obj.get("quiet")):
        click.echo(message)


def format_output(ctx: click.Context, data: dict[str, Any]) -> None:
    """Print ``data`` as JSON with --json, else as ``key: value`` lines."""
    if ctx.obj and ctx.obj.get("json"):
        output_json(data)
    else:
        for key, value in data.items():
            click.echo(f"{key}: {value}")


def load_context_config(
    ctx: click.Context, overrides: dict[str, Any] | None = None
) -> ClusterConfig:
    """Load configuration using the global --config/--profile options.

    Options left unset on the command line (None) do not override anything.
    """
    obj = ctx.obj or {}
    merged = dict(obj.get("cli_overrides") or {})
    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})
    return load_config(obj.get("config"), obj.get("profile"), merged)
