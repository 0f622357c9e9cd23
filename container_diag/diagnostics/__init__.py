"""Artifact layout, structured logging and workload orchestration.

The orchestration loop lives in container_diag.diagnostics.collector; it is
not re-exported here because the heap dump acquirer imports this package.
"""

from .layout import ArtifactTree, write_text
from .logger import LogEntry, StructuredLogger, setup_logging

__all__ = [
    "ArtifactTree",
    "write_text",
    "LogEntry",
    "StructuredLogger",
    "setup_logging",
]
