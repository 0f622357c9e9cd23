"""Utility modules for the container diagnostics collector."""

from .errors import (
    ContainerDiagError,
    ConfigurationError,
    KubectlNotFoundError,
    ArtifactPathConflict,
    ProcfsParseError,
)
from .shell import ere_escape, prefix_pattern

__all__ = [
    "ContainerDiagError",
    "ConfigurationError",
    "KubectlNotFoundError",
    "ArtifactPathConflict",
    "ProcfsParseError",
    "ere_escape",
    "prefix_pattern",
]
