"""Error hierarchy for the container diagnostics collector.

Leaf collection failures are never raised: they travel as result values
(ExecResult, HeapAcquisitionAttempt, ContainerResult). The exceptions below
cover configuration mistakes and broken invariants only.
"""

from typing import Optional, Tuple


class ContainerDiagError(Exception):
    """Base exception for all container diagnostics errors."""

    pass


class ConfigurationError(ContainerDiagError):
    """Raised when collector configuration is invalid."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class KubectlNotFoundError(ContainerDiagError):
    """Raised when the kubectl-compatible binary cannot be located."""

    def __init__(self, binary: str):
        super().__init__(f"Command not found: {binary}")
        self.binary = binary


class ArtifactPathConflict(ContainerDiagError):
    """Raised when two distinct targets would write to the same path."""

    def __init__(self, message: str, key: Tuple[str, ...], owner: Tuple[str, ...]):
        super().__init__(message)
        self.key = key
        self.owner = owner


class ProcfsParseError(ContainerDiagError):
    """Raised when a /proc record stream is structurally unusable."""

    def __init__(self, message: str, line: Optional[str] = None):
        super().__init__(message)
        self.line = line
