"""Shared enums for mini-cluster."""

from enum import Enum


class ClusterState(Enum):
    """Lifecycle state of a MiniCluster."""

    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"


class ProcessRole(Enum):
    """Role of a spawned cluster process; the value names its log files."""

    COORDINATION_SERVICE = "coordination_service"
    INITIALIZER = "initializer"
    WORKER = "worker"
    COORDINATOR = "coordinator"
