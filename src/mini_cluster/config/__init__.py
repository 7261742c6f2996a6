"""Configuration management module."""

from .loader import ClusterConfig, find_config_file, load_config, save_config

__all__ = ["ClusterConfig", "load_config", "save_config", "find_config_file"]
