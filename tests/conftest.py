"""
Pytest configuration and shared fixtures for mini-cluster tests.
"""

import logging
import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

# Add src and tests to path for imports
TESTS_DIR = Path(__file__).parent
sys.path.insert(0, str(TESTS_DIR.parent / "src"))
sys.path.insert(0, str(TESTS_DIR))

from mini_cluster.config.loader import ClusterConfig
from mini_cluster.core.cleanup import CleanupRegistry
from mini_cluster.core.cluster import MiniCluster

FAKE_TARGETS = {
    "coordination_service_target": "fake_services:coordination_service",
    "initializer_target": "fake_services:initializer",
    "worker_target": "fake_services:worker",
    "coordinator_target": "fake_services:coordinator",
}


@pytest.fixture
def cluster_dir(tmp_path: Path) -> Path:
    """A cluster root that does not exist yet."""
    return tmp_path / "cluster"


@pytest.fixture
def cleanup_registry() -> CleanupRegistry:
    """A private cleanup registry so tests never touch the global one."""
    return CleanupRegistry()


@pytest.fixture
def make_config(cluster_dir: Path) -> Callable[..., ClusterConfig]:
    """Build a ClusterConfig wired to the fake role entry points."""

    def factory(**overrides: Any) -> ClusterConfig:
        data: dict[str, Any] = {
            "directory": cluster_dir,
            "instance_name": "test1",
            "root_password": "secret",
            "num_workers": 2,
            "settle_delay": 0.0,
            "flush_interval": 0.05,
            "shutdown_timeout": 5.0,
            "max_memory": None,
            "extra_python_path": [str(TESTS_DIR)],
            **FAKE_TARGETS,
        }
        data.update(overrides)
        return ClusterConfig(**data)

    return factory


@pytest.fixture
def make_cluster(
    make_config: Callable[..., ClusterConfig], cleanup_registry: CleanupRegistry
) -> Generator[Callable[..., MiniCluster], None, None]:
    """Create clusters that are always stopped at teardown."""
    clusters: list[MiniCluster] = []

    def factory(**overrides: Any) -> MiniCluster:
        cluster = MiniCluster(make_config(**overrides), cleanup_registry)
        clusters.append(cluster)
        return cluster

    yield factory

    for cluster in clusters:
        cluster.stop()


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test."""
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.NOTSET)

    yield

    # Remove any handlers added during the test
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    root_logger.setLevel(original_level)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def sample_log_record() -> logging.LogRecord:
    """A log record carrying the fields ContextualLogger adds."""
    record = logging.LogRecord(
        name="mini_cluster.test",
        level=logging.INFO,
        pathname="/src/mini_cluster/test.py",
        lineno=42,
        msg="Worker %s launched",
        args=("w1",),
        exc_info=None,
        func="launch",
    )
    record.context = "launcher"
    record.cluster = "test1"
    record.pid = 4242
    return record
