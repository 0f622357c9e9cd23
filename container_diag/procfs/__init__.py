"""Process enumeration through the /proc pseudo-filesystem."""

from .models import (
    CMDLINE_MAX_LENGTH,
    STATUS_FIELDS,
    ProcessRecord,
    ProcessSnapshot,
    ProcessState,
    normalize_cmdline,
)
from .reader import (
    ProcessSnapshotReader,
    SnapshotReadResult,
    build_inspect_script,
    parse_inspect_output,
)
from .render import render_failure, render_snapshot

__all__ = [
    "CMDLINE_MAX_LENGTH",
    "STATUS_FIELDS",
    "ProcessRecord",
    "ProcessSnapshot",
    "ProcessState",
    "normalize_cmdline",
    "ProcessSnapshotReader",
    "SnapshotReadResult",
    "build_inspect_script",
    "parse_inspect_output",
    "render_failure",
    "render_snapshot",
]
