"""Configuration management commands."""

import click

from ..config.loader import DEFAULT_CONFIG, ENV_KEYS, ENV_PREFIX, save_config
from ..utils.logging import MiniClusterError
from .utils import format_output, handle_error, load_context_config, quiet_echo


@click.group()
def config() -> None:
    """Manage configuration settings."""
    pass


@config.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Show current configuration."""
    try:
        config_obj = load_context_config(ctx)
    except (MiniClusterError, FileNotFoundError) as e:
        handle_error(f"Failed to load configuration: {e}")
        return

    format_output(ctx, {"configuration": config_obj.model_dump(mode="json")})


@config.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate current configuration."""
    try:
        load_context_config(ctx)
    except (MiniClusterError, FileNotFoundError) as e:
        handle_error(f"Configuration validation failed: {e}")
        return

    quiet_echo(ctx, "Configuration is valid")


@config.command()
@click.option("--path", help="Custom path for config file")
@click.pass_context
def init(ctx: click.Context, path: str | None) -> None:
    """Initialize configuration file with defaults."""
    try:
        saved_path = save_config(dict(DEFAULT_CONFIG), path)
    except OSError as e:
        handle_error(f"Failed to initialize configuration: {e}")
        return

    quiet_echo(ctx, f"Configuration initialized at: {saved_path}")


@config.command()
def locations() -> None:
    """Show configuration file search locations."""
    locations = [
        "./mini-cluster.yaml",
        "./mini-cluster.yml",
        "~/.config/mini-cluster/config.yaml",
    ]

    click.echo("Configuration file search locations (in order):")
    for i, location in enumerate(locations, 1):
        click.echo(f"  {i}. {location}")

    click.echo(f"\nEnvironment variables ({ENV_PREFIX}*):")
    for key in ENV_KEYS:
        click.echo(f"  {ENV_PREFIX}{key.upper()}")
