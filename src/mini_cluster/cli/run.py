"""Run a mini cluster in the foreground."""

import time
from pathlib import Path

import click

from ..core.cluster import MiniCluster
from ..utils.logging import MiniClusterError, setup_logging
from .utils import (
    format_output,
    handle_error,
    load_context_config,
    output_table,
    quiet_echo,
    verbose_echo,
)


def _process_rows(cluster: MiniCluster) -> list[list[str]]:
    rows = []
    for process in cluster.processes:
        stats = process.stats()
        rows.append(
            [
                process.role.value,
                str(process.pid),
                "running" if stats.running else f"exited ({process.returncode})",
                f"{stats.memory_mb:.1f}",
            ]
        )
    return rows


@click.command()
@click.option("--directory", "-d", type=click.Path(), help="Empty working directory")
@click.option("--instance-name", "-n", help="Instance name")
@click.option("--password", help="Root credential")
@click.option("--workers", "-w", type=int, help="Number of worker processes")
@click.option("--port", type=int, help="Coordination service port (0 allocates)")
@click.option("--readiness-probe/--no-readiness-probe", default=None)
@click.pass_context
def run(
    ctx: click.Context,
    directory: str | None,
    instance_name: str | None,
    password: str | None,
    workers: int | None,
    port: int | None,
    readiness_probe: bool | None,
) -> None:
    """Start a cluster and keep it running until interrupted."""
    try:
        config = load_context_config(
            ctx,
            {
                "directory": directory,
                "instance_name": instance_name,
                "root_password": password,
                "num_workers": workers,
                "coordination_port": port,
                "readiness_probe": readiness_probe,
            },
        )
        verbose_echo(ctx, f"Working directory: {config.directory}")
        if config.log_file:
            setup_logging(config.log_level, Path(config.log_file), enable_console=False)
        cluster = MiniCluster(config)
    except (MiniClusterError, FileNotFoundError) as e:
        handle_error(str(e))
        return

    try:
        cluster.start()
    except MiniClusterError as e:
        cluster.stop()
        handle_error(f"Failed to start cluster: {e.message}")
        return

    format_output(
        ctx,
        {
            "instance_name": cluster.instance_name,
            "coordination_port": cluster.config.coordination_port,
            "log_dir": str(cluster.log_dir),
        },
    )
    if not (ctx.obj and ctx.obj.get("json")):
        output_table(["Role", "PID", "Status", "Memory MB"], _process_rows(cluster))

    verbose_echo(ctx, f"Configuration written to {cluster.conf_dir}")
    quiet_echo(ctx, "Cluster running, press Ctrl+C to stop")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        quiet_echo(ctx, "\nStopping cluster...")
    finally:
        cluster.stop()
