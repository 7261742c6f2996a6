"""Command line interface for mini-cluster."""
