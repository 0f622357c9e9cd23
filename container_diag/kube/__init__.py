"""Cluster access and in-container command execution."""

from .models import ContainerTarget
from .executor import ContainerExecutor, ExecResult, KubectlRunner, failure_record
from .kubectl import KubectlClient, resolve_kubectl

__all__ = [
    "ContainerTarget",
    "ContainerExecutor",
    "ExecResult",
    "KubectlRunner",
    "failure_record",
    "KubectlClient",
    "resolve_kubectl",
]
