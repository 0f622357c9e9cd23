"""Agentless diagnostics collection from live Kubernetes containers."""

__version__ = "0.1.0"
