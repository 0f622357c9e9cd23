"""Fixed-width text rendering of process snapshots."""

from typing import List

from container_diag.kube.models import ContainerTarget
from container_diag.procfs.models import UNMEASURED, ProcessRecord, ProcessSnapshot

# (header, width); the last column is unpadded
COLUMNS = (
    ("PID", 7),
    ("PPID", 7),
    ("STATE", 10),
    ("RSS(KB)", 10),
    ("VSZ(KB)", 10),
    ("NAME", 20),
    ("CMDLINE", 0),
)


def _row(values: List[str]) -> str:
    cells = []
    for (_, width), value in zip(COLUMNS, values):
        cells.append(value.ljust(width) if width else value)
    return " ".join(cells).rstrip()


def format_record(record: ProcessRecord) -> str:
    return _row(
        [
            str(record.pid),
            UNMEASURED if record.ppid is None else str(record.ppid),
            record.state.value,
            record.rss_display,
            record.vsz_display,
            record.name,
            record.cmdline,
        ]
    )


def render_snapshot(snapshot: ProcessSnapshot, target: ContainerTarget) -> str:
    """Render the processes artifact for one container."""
    lines = [
        "=== Process List (from /proc filesystem) ===",
        f"Container: {target.container}",
        f"Pod: {target.pod}",
        f"Namespace: {target.namespace}",
        f"Collected at: {snapshot.collected_at or 'unknown'}",
        "",
        _row([name for name, _ in COLUMNS]),
        _row(["-" * max(width, len(name)) for name, width in COLUMNS]),
    ]
    lines.extend(format_record(r) for r in snapshot.records)
    lines.extend(
        [
            "",
            "=== Process Count ===",
            f"Total processes: {len(snapshot.records)}",
            "",
            "=== Memory Summary ===",
        ]
    )
    if snapshot.memory_summary:
        lines.extend(snapshot.memory_summary)
    else:
        lines.append("Memory information unavailable (/proc/meminfo not readable)")
    return "\n".join(lines) + "\n"


def render_failure(target: ContainerTarget, detail: str) -> str:
    """Single failure note written instead of a partial table."""
    lines = [
        f"Failed to collect processes from container {target.container}",
        "The container may not be running or may not have /proc mounted",
        f"Pod: {target.pod}",
        f"Namespace: {target.namespace}",
    ]
    if detail.strip():
        lines.extend(["", detail.rstrip()])
    return "\n".join(lines) + "\n"
