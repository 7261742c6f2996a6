"""Main CLI entry point for mini-cluster."""

import click

from .. import __version__
from ..utils.logging import setup_logging
from .config import config
from .run import run


@click.group()
@click.version_option(version=__version__, prog_name="mini-cluster")
@click.option("--config", "-c", help="Configuration file path")
@click.option("--profile", "-p", help="Configuration profile to use")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option("--log-level", help="Override log_level setting")
@click.pass_context
def main(
    ctx: click.Context,
    config: str | None,
    profile: str | None,
    verbose: bool,
    quiet: bool,
    json: bool,
    log_level: str | None,
) -> None:
    """Mini cluster - run a local multi-process cluster for integration tests.

    Use command groups to organize functionality:
    - run: Start a cluster in the foreground
    - config: Manage configuration settings
    """
    if verbose and quiet:
        raise click.UsageError("Cannot use both --verbose and --quiet options")

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["profile"] = profile
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["json"] = json

    ctx.obj["cli_overrides"] = {"log_level": log_level}
    ctx.obj["cli_overrides"] = {
        k: v for k, v in ctx.obj["cli_overrides"].items() if v is not None
    }

    level = "DEBUG" if verbose else (log_level or ("ERROR" if quiet else "WARNING"))
    setup_logging(level, enable_structured=not verbose)


main.add_command(run)
main.add_command(config)


if __name__ == "__main__":
    main()
