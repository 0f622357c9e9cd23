"""Best-effort heap snapshot acquisition from a live runtime process.

There is no completion notification for a signal-triggered snapshot, so the
acquirer runs an explicit state machine: locate the runtime through /proc,
signal it, then alternate waiting and polling until a new snapshot appears
or the grace period ends, then copy the file out.

Every state has its own time budget, so the worst case is auditable:
    locate + signal + grace period + polls + copy
A state that overruns its budget fails the attempt with that state's outcome.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from container_diag.config import CollectorConfig
from container_diag.diagnostics.layout import write_text
from container_diag.diagnostics.logger import StructuredLogger
from container_diag.heapdump.guidance import no_process_note, render_guidance
from container_diag.heapdump.models import (
    STATE_FAILURE_OUTCOMES,
    AcquisitionOutcome,
    AcquisitionState,
    HeapAcquisitionAttempt,
)
from container_diag.kube.executor import ContainerExecutor
from container_diag.procfs.reader import ProcessSnapshotReader
from container_diag.procfs.render import render_failure, render_snapshot
from container_diag.utils.shell import prefix_pattern

logger = logging.getLogger(__name__)

PROCESS_INFO_FILE = "process-info.txt"
HEAP_DUMP_LOG_FILE = "heap-dump.log"
COLLECTION_FAILED_FILE = "collection-failed.txt"

# Headroom on top of each state's command timeouts
STATE_BUDGET_SLACK = 5.0

METADATA_SCRIPT = """
pid="$1"
env_pattern="$2"
echo "=== Process Information ==="
echo "PID: $pid"
echo ""
echo "Process Status (/proc/$pid/status):"
cat "/proc/$pid/status" 2>/dev/null || echo "Could not read process status"
echo ""
echo "Command Line (/proc/$pid/cmdline):"
tr '\\000' ' ' 2>/dev/null < "/proc/$pid/cmdline" || echo "Could not read command line"
echo ""
echo ""
echo "Environment (/proc/$pid/environ):"
tr '\\000' '\\n' 2>/dev/null < "/proc/$pid/environ" | grep -E "$env_pattern" || echo "Could not read environment"
echo ""
echo "=== Memory Usage ==="
cat /proc/meminfo 2>/dev/null || echo "Could not get memory info"
echo ""
echo "=== Runtime Version ==="
{version_command} 2>/dev/null || echo "Could not get runtime version"
echo ""
echo "=== Available Disk Space ==="
df -h 2>/dev/null || echo "Could not get disk space"
"""

# $1 pattern, $2 max depth, remaining args are search directories.
# Prints "<size> <path>" per candidate; exits 0 even when nothing matches.
SEARCH_SCRIPT = """
pattern="$1"
depth="$2"
shift 2
for dir in "$@"; do
  [ -d "$dir" ] || continue
  find "$dir" -maxdepth "$depth" -type f -name "$pattern" 2>/dev/null
done | while IFS= read -r f; do
  size=$(wc -c < "$f" 2>/dev/null | tr -d ' ')
  printf '%s %s\\n' "$size" "$f"
done
true
"""


def snapshot_file_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"heapdump-{now.strftime('%Y%m%d-%H%M%S')}.heapsnapshot"


def parse_search_output(output: str) -> Dict[str, Optional[int]]:
    """Parse `<size> <path>` lines into an ordered path → size mapping."""
    found: Dict[str, Optional[int]] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        size_text, sep, path = line.partition(" ")
        if not sep or not path:
            continue
        try:
            size: Optional[int] = int(size_text)
        except ValueError:
            size = None
        found.setdefault(path, size)
    return found


def _format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{num_bytes}B"


class HeapSnapshotAcquirer:
    """Runs exactly one heap snapshot attempt for one container.

    Usage:
        acquirer = HeapSnapshotAcquirer(executor, cluster, config, output_dir)
        attempt = await acquirer.run()
        if not attempt.succeeded:
            print(attempt.outcome)
    """

    def __init__(
        self,
        executor: ContainerExecutor,
        cluster,
        config: CollectorConfig,
        output_dir: Path,
        reader: Optional[ProcessSnapshotReader] = None,
    ):
        """Initialize acquirer.

        Args:
            executor: Executor bound to the target container
            cluster: Object providing copy_from_container (KubectlClient)
            config: Collector configuration
            output_dir: This container's exclusive artifact directory
            reader: Process reader (default: one built on `executor`)
        """
        self.executor = executor
        self.cluster = cluster
        self.config = config
        self.output_dir = Path(output_dir)
        self.reader = reader or ProcessSnapshotReader(executor)
        self.attempt = HeapAcquisitionAttempt(target=executor.target)
        self.log = StructuredLogger(target=str(executor.target), logger_name=__name__)

        self._baseline: Optional[Dict[str, Optional[int]]] = None
        self._last_seen: Dict[str, Optional[int]] = {}
        self._accepted_size: Optional[int] = None
        self._deadline: Optional[float] = None
        self._started: float = 0.0
        self._handlers: Dict[AcquisitionState, Callable[[], Awaitable[AcquisitionState]]] = {
            AcquisitionState.LOCATING_RUNTIME: self._locate_runtime,
            AcquisitionState.SIGNALING: self._signal,
            AcquisitionState.WAITING: self._wait,
            AcquisitionState.POLLING: self._poll,
            AcquisitionState.RETRIEVING: self._retrieve,
        }

    def state_budget(self, state: AcquisitionState) -> float:
        """Upper bound, in seconds, for a single visit to `state`."""
        cmd = self.config.command_timeout
        if state == AcquisitionState.LOCATING_RUNTIME:
            # process listing, metadata, baseline search
            return 3 * cmd + STATE_BUDGET_SLACK
        if state == AcquisitionState.SIGNALING:
            # baseline search when locating was cut short, then the signal
            return 2 * cmd + STATE_BUDGET_SLACK
        if state == AcquisitionState.WAITING:
            return self.config.heap_dump_grace_period + STATE_BUDGET_SLACK
        if state == AcquisitionState.RETRIEVING:
            # stability re-check, copy, cleanup
            return self.config.copy_timeout + 2 * cmd + STATE_BUDGET_SLACK
        return cmd + STATE_BUDGET_SLACK

    def _enter(self, state: AcquisitionState) -> None:
        elapsed = time.monotonic() - self._started
        self.attempt.state = state
        self.attempt.transitions.append((state, elapsed))
        self.log.debug(f"State: {state.value}", elapsed=f"{elapsed:.1f}s")

    def _overran(self, state: AcquisitionState, budget: float) -> AcquisitionState:
        message = f"State {state.value} exceeded its {budget:g}s budget"
        if state == AcquisitionState.LOCATING_RUNTIME and self.attempt.runtime_pid is not None:
            # The runtime was found; only metadata or the baseline search was cut short
            self.log.warning(f"{message} after finding PID {self.attempt.runtime_pid}; continuing")
            return AcquisitionState.SIGNALING
        self.log.error(message)
        return self.attempt.fail(STATE_FAILURE_OUTCOMES[state], message)

    async def run(self) -> HeapAcquisitionAttempt:
        """Drive the state machine to a terminal state and write artifacts.

        Returns:
            The attempt record; outcome is always set
        """
        if self.attempt.state != AcquisitionState.IDLE:
            raise RuntimeError("A heap snapshot attempt runs at most once")

        self._started = time.monotonic()
        self._enter(AcquisitionState.IDLE)
        state = AcquisitionState.LOCATING_RUNTIME

        while not state.is_terminal:
            self._enter(state)
            budget = self.state_budget(state)
            try:
                state = await asyncio.wait_for(self._handlers[state](), timeout=budget)
            except asyncio.TimeoutError:
                state = self._overran(state, budget)

        if state == AcquisitionState.SUCCEEDED:
            self.attempt.outcome = AcquisitionOutcome.SUCCEEDED
        self._enter(state)
        self.attempt.elapsed_s = time.monotonic() - self._started

        outcome = self.attempt.outcome.value if self.attempt.outcome else "unknown"
        self.log.info(
            f"Heap dump attempt finished: {outcome}",
            elapsed=f"{self.attempt.elapsed_s:.1f}s",
        )
        self._write_artifacts()
        return self.attempt

    async def _locate_runtime(self) -> AcquisitionState:
        runtime = self.config.runtime_name
        self.log.info(f"Looking for a {runtime} process using /proc")

        read = await self.reader.read(timeout=self.config.command_timeout)
        if read.snapshot is None:
            self.attempt.process_info = render_failure(self.executor.target, read.error)
            self.log.warning("Could not list processes in container")
            return self.attempt.fail(AcquisitionOutcome.NO_RUNTIME_PROCESS_FOUND, read.error)

        record = read.snapshot.find_first(runtime)
        if record is None:
            note = no_process_note(runtime, self.executor.target.container)
            self.attempt.process_info = render_snapshot(read.snapshot, self.executor.target)
            self.log.warning(note)
            return self.attempt.fail(AcquisitionOutcome.NO_RUNTIME_PROCESS_FOUND, note)

        self.attempt.runtime_pid = record.pid
        self.attempt.runtime_cmdline = record.cmdline
        self.log.info(f"Found {runtime} process", pid=record.pid, name=record.name)

        metadata = await self.executor.execute(
            METADATA_SCRIPT.format(version_command=self.config.runtime_version_command),
            timeout=self.config.command_timeout,
            script_args=[str(record.pid), prefix_pattern(self.config.env_var_prefixes)],
        )
        self.attempt.process_info = metadata.output
        if not metadata.succeeded:
            self.log.warning("Could not gather process metadata")

        await self._take_baseline()
        return AcquisitionState.SIGNALING

    async def _take_baseline(self) -> None:
        self._baseline = await self._search() or {}
        if self._baseline:
            self.log.info(f"Ignoring {len(self._baseline)} pre-existing snapshot file(s)")

    async def _signal(self) -> AcquisitionState:
        pid = self.attempt.runtime_pid
        signal_name = self.config.dump_signal
        if self._baseline is None:
            await self._take_baseline()

        self.log.info(f"Sending SIG{signal_name} to trigger heap dump", pid=pid)

        result = await self.executor.execute(
            f'kill -{signal_name} "$1"',
            timeout=self.config.command_timeout,
            script_args=[str(pid)],
        )
        if not result.succeeded:
            self.log.error(f"Failed to send SIG{signal_name}", pid=pid)
            return self.attempt.fail(AcquisitionOutcome.SIGNAL_FAILED, result.output)

        self.log.info(f"SIG{signal_name} sent", pid=pid)
        self._deadline = time.monotonic() + self.config.heap_dump_grace_period
        self.log.info(
            f"Waiting up to {self.config.heap_dump_grace_period:g}s for heap dump to be generated"
        )
        return AcquisitionState.WAITING

    async def _wait(self) -> AcquisitionState:
        remaining = self._deadline - time.monotonic()
        if remaining > 0:
            interval = self.config.poll_interval
            await asyncio.sleep(remaining if interval is None else min(interval, remaining))
        return AcquisitionState.POLLING

    async def _poll(self) -> AcquisitionState:
        found = await self._search() or {}
        new = {p: s for p, s in found.items() if p not in self._baseline}
        deadline_passed = time.monotonic() >= self._deadline
        single_check = self.config.poll_interval is None

        for path, size in new.items():
            # Accept once the size is stable between two polls, or when out of time
            stable = bool(size) and self._last_seen.get(path) == size
            if stable or deadline_passed or single_check:
                self.attempt.remote_artifact_path = path
                self.attempt.snapshot_stable = stable
                self._accepted_size = size
                self.log.info(f"Found heap dump file: {path}", size=size)
                return AcquisitionState.RETRIEVING

        if new:
            self.log.debug(f"Snapshot still being written: {', '.join(new)}")
        self._last_seen = new

        if deadline_passed:
            dirs = ", ".join(self.config.snapshot_search_dirs)
            self.log.warning(f"No heap dump files found in {dirs}")
            return self.attempt.fail(
                AcquisitionOutcome.ARTIFACT_NOT_FOUND,
                f"No new {self.config.snapshot_pattern} files found in {dirs}",
            )
        return AcquisitionState.WAITING

    async def _search(self) -> Optional[Dict[str, Optional[int]]]:
        result = await self.executor.execute(
            SEARCH_SCRIPT,
            timeout=self.config.command_timeout,
            script_args=[
                self.config.snapshot_pattern,
                str(self.config.snapshot_search_depth),
                *self.config.snapshot_search_dirs,
            ],
        )
        if not result.succeeded:
            self.log.warning("Snapshot search failed")
            return None
        return parse_search_output(result.output)

    async def _confirm_stable(self, remote: str) -> bool:
        """Search once more and compare the size seen when the file was accepted."""
        found = await self._search() or {}
        size = found.get(remote)
        return bool(size) and size == self._accepted_size

    async def _retrieve(self) -> AcquisitionState:
        remote = self.attempt.remote_artifact_path
        local = self.output_dir / snapshot_file_name()
        self.attempt.local_artifact_path = local

        if not self.attempt.snapshot_stable:
            self.attempt.snapshot_stable = await self._confirm_stable(remote)
            if not self.attempt.snapshot_stable:
                self.log.warning(f"Heap dump {remote} may still be growing; copying as-is")

        result = await self.cluster.copy_from_container(
            self.executor.target,
            remote,
            local,
            timeout=self.config.copy_timeout,
        )
        if not result.succeeded or not local.exists():
            # A partial local file stays for inspection
            self.log.error(f"Failed to copy heap dump {remote}")
            return self.attempt.fail(AcquisitionOutcome.COPY_FAILED, result.output)

        self.log.info(f"Heap dump copied to {local} ({_format_size(local.stat().st_size)})")

        if not self.attempt.snapshot_stable:
            # The local copy may be truncated; the complete file stays in the container
            self.log.warning(f"Left {remote} in the container; the copy may be incomplete")
            return AcquisitionState.SUCCEEDED

        cleanup = await self.executor.execute(
            'rm -f -- "$1"',
            timeout=self.config.command_timeout,
            script_args=[remote],
        )
        if not cleanup.succeeded:
            self.log.warning(f"Could not remove {remote} from the container")
        return AcquisitionState.SUCCEEDED

    def _write_artifacts(self) -> None:
        write_text(
            self.output_dir / PROCESS_INFO_FILE,
            self.attempt.process_info or "Process metadata was not gathered\n",
        )
        if not self.attempt.succeeded:
            write_text(
                self.output_dir / COLLECTION_FAILED_FILE,
                render_guidance(self.attempt, self.config),
            )
            logger.info(f"Created guidance file: {self.output_dir / COLLECTION_FAILED_FILE}")
        write_text(self.output_dir / HEAP_DUMP_LOG_FILE, self.log.render_text())
