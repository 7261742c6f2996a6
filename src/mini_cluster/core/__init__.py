"""Cluster lifecycle: layout, cleanup hooks and the orchestrator."""

from .cluster import MiniCluster
from .enums import ClusterState, ProcessRole

__all__ = ["MiniCluster", "ClusterState", "ProcessRole"]
