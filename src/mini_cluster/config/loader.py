"""Cluster configuration loading and management."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..utils.logging import ConfigError

ENV_PREFIX = "MINI_CLUSTER_"

# Placeholder entry points of the external server distribution; tests and
# real deployments point these at their own programs.
DEFAULT_TARGETS = {
    "coordination_service_target": "cluster_server.coordination:main",
    "initializer_target": "cluster_server.initialize:main",
    "worker_target": "cluster_server.worker:main",
    "coordinator_target": "cluster_server.coordinator:main",
}


class ClusterConfig(BaseModel):
    """Configuration of one local mini cluster."""

    # Identity
    directory: Path = Field(description="Empty or missing working directory")
    instance_name: str = Field(default="miniInstance", description="Instance name")
    root_password: str = Field(description="Initial root credential")

    # Topology
    coordination_port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Coordination service client port (0 allocates one)",
    )
    num_workers: int = Field(default=2, ge=0, description="Worker process count")

    # Overrides written into the generated configuration files
    site_config: dict[str, str] = Field(
        default_factory=dict, description="Site config overrides"
    )
    coordination_config: dict[str, str] | None = Field(
        default=None, description="Coordination service config overrides"
    )

    # Process launch
    max_memory: str | None = Field(
        default="512M", description="Address space limit per child process"
    )
    extra_python_path: list[str] = Field(
        default_factory=list, description="Import path entries added for children"
    )
    library_source: Path | None = Field(
        default=None, description="Library directory copied into lib/"
    )
    coordination_service_target: str = Field(
        default=DEFAULT_TARGETS["coordination_service_target"]
    )
    initializer_target: str = Field(default=DEFAULT_TARGETS["initializer_target"])
    worker_target: str = Field(default=DEFAULT_TARGETS["worker_target"])
    coordinator_target: str = Field(default=DEFAULT_TARGETS["coordinator_target"])

    # Timing
    settle_delay: float = Field(
        default=0.25, ge=0, description="Seconds to wait before initializing"
    )
    readiness_probe: bool = Field(
        default=False, description="Poll the coordination port before initializing"
    )
    readiness_timeout: float = Field(default=30.0, gt=0)
    flush_interval: float = Field(
        default=1.0, gt=0, description="Seconds between log flushes"
    )
    shutdown_timeout: float = Field(
        default=10.0, ge=0, description="Seconds to wait for children on stop"
    )

    # Logging of the orchestrator itself
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(default=None, description="Log file path")


def find_config_file(custom_path: str | None = None) -> Path | None:
    """Find configuration file in standard locations."""
    if custom_path:
        path = Path(custom_path).expanduser()
        if path.exists():
            return path
        raise FileNotFoundError(f"Config file not found: {custom_path}")

    search_paths = [
        Path.cwd() / "mini-cluster.yaml",
        Path.cwd() / "mini-cluster.yml",
        Path.home() / ".config" / "mini-cluster" / "config.yaml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    try:
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}")


ENV_KEYS = (
    "directory",
    "instance_name",
    "root_password",
    "coordination_port",
    "num_workers",
    "max_memory",
    "settle_delay",
    "readiness_probe",
    "flush_interval",
    "shutdown_timeout",
    "log_level",
    "log_file",
)


def load_env_vars(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Load configuration from MINI_CLUSTER_* environment variables.

    Values stay strings; pydantic coerces them on validation.
    """
    environ = os.environ if environ is None else environ
    config: dict[str, Any] = {}

    for key in ENV_KEYS:
        env_var = f"{ENV_PREFIX}{key.upper()}"
        if env_var in environ:
            config[key] = environ[env_var]

    return config


def load_config(
    config_path: str | None = None,
    profile: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> ClusterConfig:
    """Load configuration from file and environment variables.

    Precedence order (highest to lowest):
    1. Explicit overrides
    2. Environment variables
    3. Configuration file (with profile support)
    4. Default values

    Raises:
        ConfigError: If the merged configuration does not validate
    """
    config_data: dict[str, Any] = {}

    config_file = find_config_file(config_path)
    if config_file:
        file_data = load_config_file(config_file)
        config_data.update({k: v for k, v in file_data.items() if k != "profiles"})

        profiles = file_data.get("profiles") or {}
        if profile and profile in profiles:
            config_data.update(profiles[profile])

    config_data.update(load_env_vars())

    if overrides:
        config_data.update(overrides)

    try:
        return ClusterConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def save_config(data: ClusterConfig | dict[str, Any], config_path: str | None = None) -> Path:
    """Save configuration to a YAML file."""
    if config_path:
        path = Path(config_path).expanduser()
    else:
        config_dir = Path.home() / ".config" / "mini-cluster"
        config_dir.mkdir(parents=True, exist_ok=True)
        path = config_dir / "config.yaml"

    if isinstance(data, ClusterConfig):
        data = data.model_dump(mode="json")

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=True)

    return path


# Values written by `config init`; directory and root_password have no default
DEFAULT_CONFIG = {
    "instance_name": "miniInstance",
    "coordination_port": 0,
    "num_workers": 2,
    "max_memory": "512M",
    "settle_delay": 0.25,
    "readiness_probe": False,
    "flush_interval": 1.0,
    "shutdown_timeout": 10.0,
    "log_level": "INFO",
    **DEFAULT_TARGETS,
}
