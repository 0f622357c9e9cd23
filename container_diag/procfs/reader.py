"""Process enumeration from the raw /proc filesystem.

Container images often ship without ps, pgrep or pidof, so a small POSIX sh
script walks /proc/[0-9]* inside the container and emits a line-oriented
record stream; all interpretation happens here in Python.

Stream format:
    @@self <pid of the inspecting shell>
    @@collected <UTC timestamp>
    @@pid <pid>
    <selected /proc/<pid>/status lines>
    @@comm <short name>
    @@cmdline <cmdline with separators replaced by spaces>
    ...
    @@meminfo
    <selected /proc/meminfo lines>
    @@end
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from container_diag.kube.executor import ContainerExecutor, ExecResult
from container_diag.procfs.models import (
    CMDLINE_MAX_LENGTH,
    MEMINFO_KEYS,
    STATUS_FIELDS,
    ProcessRecord,
    ProcessSnapshot,
    ProcessState,
    normalize_cmdline,
    parse_status_fields,
)
from container_diag.procfs.render import render_failure, render_snapshot
from container_diag.utils.errors import ProcfsParseError

logger = logging.getLogger(__name__)

PROC_ROOT = "/proc"

_SELF = "@@self"
_COLLECTED = "@@collected"
_PID = "@@pid"
_COMM = "@@comm"
_CMDLINE = "@@cmdline"
_MEMINFO = "@@meminfo"
_END = "@@end"


def build_inspect_script(proc_root: str = PROC_ROOT) -> str:
    """Build the in-container enumeration script.

    The status grep pattern is derived from STATUS_FIELDS so the script and
    the parser cannot drift apart.
    """
    status_keys = "|".join(f.key for f in STATUS_FIELDS)
    meminfo_keys = "|".join(MEMINFO_KEYS)
    return f"""
self_pid=$$
echo "{_SELF} $self_pid"
echo "{_COLLECTED} $(date -u +%Y-%m-%dT%H:%M:%SZ 2>/dev/null || date)"
for pid_dir in {proc_root}/[0-9]*; do
  pid=${{pid_dir##*/}}
  [ "$pid" = "$self_pid" ] && continue
  status=$(cat "$pid_dir/status" 2>/dev/null) || continue
  [ -n "$status" ] || continue
  name=$(cat "$pid_dir/comm" 2>/dev/null)
  cmdline=$(tr '\\000\\n' '  ' 2>/dev/null < "$pid_dir/cmdline" | head -c {CMDLINE_MAX_LENGTH})
  echo "{_PID} $pid"
  printf '%s\\n' "$status" | grep -E '^({status_keys}):'
  echo "{_COMM} $name"
  echo "{_CMDLINE} $cmdline"
done
echo "{_MEMINFO}"
grep -E '^({meminfo_keys}):' {proc_root}/meminfo 2>/dev/null
echo "{_END}"
"""


def _marker_value(line: str, marker: str) -> str:
    rest = line[len(marker):]
    return rest[1:] if rest.startswith(" ") else rest


@dataclass
class _PendingRecord:
    pid: int
    status_lines: List[str]
    name: str = ""
    cmdline: str = ""

    def build(self) -> ProcessRecord:
        values = parse_status_fields(self.status_lines)
        return ProcessRecord(
            pid=self.pid,
            ppid=values.get("ppid"),
            state=values.get("state", ProcessState.OTHER),
            rss_kb=values.get("rss_kb"),
            vsz_kb=values.get("vsz_kb"),
            name=self.name,
            cmdline=normalize_cmdline(self.cmdline, self.name),
        )


def parse_inspect_output(output: str) -> ProcessSnapshot:
    """Parse the record stream produced by build_inspect_script.

    Malformed per-process records are skipped. The inspector's own pid is
    dropped even if the script failed to exclude it.

    Raises:
        ProcfsParseError: If the stream is missing its start or end marker
    """
    inspector_pid: Optional[int] = None
    collected_at = ""
    memory: List[str] = []
    records: Dict[int, ProcessRecord] = {}
    pending: Optional[_PendingRecord] = None
    in_meminfo = False
    seen_self = False
    seen_end = False

    def flush() -> None:
        nonlocal pending
        if pending is not None and pending.pid not in records:
            records[pending.pid] = pending.build()
        pending = None

    for line in output.splitlines():
        if line.startswith(_SELF):
            seen_self = True
            try:
                inspector_pid = int(_marker_value(line, _SELF).strip())
            except ValueError:
                inspector_pid = None
        elif line.startswith(_COLLECTED):
            collected_at = _marker_value(line, _COLLECTED).strip()
        elif line.startswith(_PID):
            flush()
            in_meminfo = False
            try:
                pid = int(_marker_value(line, _PID).strip())
            except ValueError:
                logger.debug(f"Skipping malformed pid line: {line!r}")
                continue
            pending = _PendingRecord(pid=pid, status_lines=[])
        elif line.startswith(_COMM):
            if pending is not None:
                pending.name = _marker_value(line, _COMM).strip()
        elif line.startswith(_CMDLINE):
            if pending is not None:
                pending.cmdline = _marker_value(line, _CMDLINE)
        elif line.startswith(_MEMINFO):
            flush()
            in_meminfo = True
        elif line.startswith(_END):
            flush()
            seen_end = True
            break
        elif in_meminfo:
            if line.strip():
                memory.append(line.strip())
        elif pending is not None:
            pending.status_lines.append(line)

    if not seen_self or not seen_end:
        raise ProcfsParseError(
            "Incomplete process listing (missing start or end marker)",
            line=output[-200:] if output else None,
        )

    if inspector_pid is not None:
        records.pop(inspector_pid, None)

    return ProcessSnapshot(
        records=[records[pid] for pid in sorted(records)],
        inspector_pid=inspector_pid,
        collected_at=collected_at,
        memory_summary=memory,
    )


@dataclass
class SnapshotReadResult:
    """A parsed snapshot, or the reason there is none."""

    snapshot: Optional[ProcessSnapshot]
    exec_result: ExecResult
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.snapshot is not None


class ProcessSnapshotReader:
    """Reads the process table of one container through its executor."""

    def __init__(self, executor: ContainerExecutor, proc_root: str = PROC_ROOT):
        self.executor = executor
        self.proc_root = proc_root

    async def read(self, timeout: Optional[float] = None) -> SnapshotReadResult:
        """Take one snapshot. Never raises for container-side failures."""
        result = await self.executor.execute(
            build_inspect_script(self.proc_root),
            timeout=timeout,
        )
        if not result.succeeded:
            logger.warning(f"Failed to collect processes from container {self.executor.target}")
            return SnapshotReadResult(snapshot=None, exec_result=result, error=result.output)

        try:
            snapshot = parse_inspect_output(result.output)
        except ProcfsParseError as e:
            logger.warning(f"Unusable process listing from {self.executor.target}: {e}")
            return SnapshotReadResult(
                snapshot=None,
                exec_result=result,
                error=f"{e}\n{result.output}",
            )

        logger.debug(f"Read {len(snapshot.records)} processes from {self.executor.target}")
        return SnapshotReadResult(snapshot=snapshot, exec_result=result)

    async def collect_text(self, timeout: Optional[float] = None) -> str:
        """Snapshot rendered as the processes artifact, or a failure note."""
        read = await self.read(timeout=timeout)
        if read.snapshot is None:
            return render_failure(self.executor.target, read.error)
        return render_snapshot(read.snapshot, self.executor.target)
