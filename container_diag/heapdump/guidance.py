"""Guidance written when a heap snapshot could not be collected.

The document states what was attempted, the likely cause for the specific
outcome and how to enable snapshots, so a missing snapshot can be explained
from the output directory alone.
"""

from typing import List

from container_diag.config import CollectorConfig
from container_diag.heapdump.models import AcquisitionOutcome, HeapAcquisitionAttempt

RULE = "=" * 67
HEAPSNAPSHOT_SIGNAL_DOCS = "https://nodejs.org/docs/latest/api/cli.html#--heapsnapshot-signalsignal"


def _section(title: str) -> List[str]:
    return [RULE, title, RULE, ""]


def no_process_note(runtime_name: str, container: str) -> str:
    return f"No {runtime_name} process found in container {container}"


def _likely_cause(attempt: HeapAcquisitionAttempt, config: CollectorConfig) -> List[str]:
    runtime = config.runtime_name
    container = attempt.target.container
    outcome = attempt.outcome

    if outcome == AcquisitionOutcome.NO_RUNTIME_PROCESS_FOUND:
        return [
            no_process_note(runtime, container),
            f"Searched the /proc filesystem for a process whose name or command line contains '{runtime}'.",
            f"This usually means the container is not running a {runtime} application,",
            "or that the container could not be reached (see the details below).",
        ]
    if outcome == AcquisitionOutcome.SIGNAL_FAILED:
        return [
            f"The SIG{config.dump_signal} signal could not be delivered to PID {attempt.runtime_pid}.",
            "The process may have exited, or the container user may not be allowed to signal it.",
        ]
    if outcome == AcquisitionOutcome.ARTIFACT_NOT_FOUND:
        dirs = ", ".join(config.snapshot_search_dirs)
        return [
            f"The signal was delivered but no new {config.snapshot_pattern} file appeared in",
            f"{dirs} within {config.heap_dump_grace_period:g}s.",
            "",
            f"The application is most likely not instrumented to write a heap snapshot on SIG{config.dump_signal}.",
            "This is the default state for most Node.js applications. On a read-only root",
            "filesystem the snapshot also fails unless it is written to a writable directory.",
        ]
    if outcome == AcquisitionOutcome.COPY_FAILED:
        path = attempt.remote_artifact_path or "<unknown>"
        return [
            f"A heap snapshot was written to {path} but could not be copied out.",
            "Common causes: tar is missing from the image, the local disk is full,",
            "or the copy exceeded its timeout. The snapshot was left in the container.",
            "Retrieve it manually with:",
            f"  kubectl cp -n {attempt.target.namespace} {attempt.target.pod}:{path} ./heapdump.heapsnapshot -c {container}",
        ]
    return ["Unknown outcome."]


def render_guidance(attempt: HeapAcquisitionAttempt, config: CollectorConfig) -> str:
    """Render collection-failed.txt for a failed attempt."""
    target = attempt.target
    pid = attempt.runtime_pid if attempt.runtime_pid is not None else "not found"

    lines = _section("Heap Dump Collection Failed")
    lines += [
        f"Outcome: {attempt.outcome.value if attempt.outcome else 'unknown'}",
        "",
        "Process Information:",
        f"  PID: {pid}",
        f"  Container: {target.container}",
        f"  Pod: {target.pod}",
        f"  Namespace: {target.namespace}",
        "",
        "What was attempted:",
        f"  1. Locate a '{config.runtime_name}' process through /proc",
    ]
    if attempt.runtime_pid is not None:
        lines += [
            f"  2. Send SIG{config.dump_signal} to PID {attempt.runtime_pid}",
            f"  3. Wait up to {config.heap_dump_grace_period:g}s for a new {config.snapshot_pattern} file",
            f"     in {', '.join(config.snapshot_search_dirs)}",
            "  4. Copy the snapshot out and remove it from the container",
        ]
    lines.append("")

    lines += _section("Why This Happened")
    lines += _likely_cause(attempt, config)
    lines.append("")

    if attempt.outcome != AcquisitionOutcome.COPY_FAILED:
        lines += _section("How to Enable Heap Dumps")
        lines += [
            "Node.js built-in flag (v12.0.0+): no image rebuild or dependencies required.",
            "",
            "Add to your Deployment or Backstage CR:",
            "  spec:",
            "    template:",
            "      spec:",
            "        containers:",
            f"        - name: {config.primary_container}",
            "          env:",
            "          - name: NODE_OPTIONS",
            f'            value: "--heapsnapshot-signal=SIG{config.dump_signal} --diagnostic-dir=/tmp"',
            "",
            f"  --heapsnapshot-signal=SIG{config.dump_signal} writes a heap snapshot when the signal arrives.",
            "  --diagnostic-dir=/tmp is required on read-only root filesystems.",
            "",
            f"Reference: {HEAPSNAPSHOT_SIGNAL_DOCS}",
            "",
        ]

    lines += _section("Next Steps")
    lines += [
        "1. Update your Deployment/CR with NODE_OPTIONS as shown above",
        "2. Redeploy and wait for the pod to restart",
        "3. Run the collection again with heap dumps enabled (--with-heap-dumps)",
        "",
    ]

    if attempt.detail.strip():
        lines += _section("Details")
        lines += [attempt.detail.rstrip(), ""]

    lines += _section("Diagnostic Logs")
    lines += [
        "For detailed logs: heap-dump.log",
        "For process info: process-info.txt",
    ]
    return "\n".join(lines) + "\n"
