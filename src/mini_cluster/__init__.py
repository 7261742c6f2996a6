"""mini-cluster: a local multi-process cluster for integration tests."""

__version__ = "0.1.0"

from .config.loader import ClusterConfig
from .core.cluster import MiniCluster
from .core.enums import ClusterState, ProcessRole
from .utils.logging import (
    ConfigError,
    IllegalStateError,
    InitializationError,
    LaunchError,
    MiniClusterError,
)

__all__ = [
    "MiniCluster",
    "ClusterConfig",
    "ClusterState",
    "ProcessRole",
    "MiniClusterError",
    "ConfigError",
    "LaunchError",
    "InitializationError",
    "IllegalStateError",
    "__version__",
]
