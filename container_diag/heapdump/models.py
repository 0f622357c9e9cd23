"""Heap snapshot acquisition states and attempt records.

Lifecycle:
    idle → locating_runtime → signaling → waiting ⇄ polling → retrieving → succeeded
                 ↓                ↓                    ↓            ↓
               failed           failed               failed       failed
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from container_diag.kube.models import ContainerTarget


class AcquisitionState(str, Enum):
    """States of one heap snapshot acquisition."""

    IDLE = "idle"
    LOCATING_RUNTIME = "locating_runtime"
    SIGNALING = "signaling"
    WAITING = "waiting"
    POLLING = "polling"
    RETRIEVING = "retrieving"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AcquisitionState.SUCCEEDED, AcquisitionState.FAILED)


class AcquisitionOutcome(str, Enum):
    """Final result of an attempt."""

    SUCCEEDED = "Succeeded"
    NO_RUNTIME_PROCESS_FOUND = "NoRuntimeProcessFound"
    SIGNAL_FAILED = "SignalFailed"
    ARTIFACT_NOT_FOUND = "ArtifactNotFound"
    COPY_FAILED = "CopyFailed"


# Outcome recorded when a state overruns its own time budget
STATE_FAILURE_OUTCOMES = {
    AcquisitionState.LOCATING_RUNTIME: AcquisitionOutcome.NO_RUNTIME_PROCESS_FOUND,
    AcquisitionState.SIGNALING: AcquisitionOutcome.SIGNAL_FAILED,
    AcquisitionState.WAITING: AcquisitionOutcome.ARTIFACT_NOT_FOUND,
    AcquisitionState.POLLING: AcquisitionOutcome.ARTIFACT_NOT_FOUND,
    AcquisitionState.RETRIEVING: AcquisitionOutcome.COPY_FAILED,
}


@dataclass
class HeapAcquisitionAttempt:
    """One heap snapshot attempt for one container. Never retried in a run."""

    target: ContainerTarget
    runtime_pid: Optional[int] = None
    runtime_cmdline: str = ""
    remote_artifact_path: Optional[str] = None
    # False when the snapshot size was still changing when it was copied
    snapshot_stable: bool = False
    local_artifact_path: Optional[Path] = None
    outcome: Optional[AcquisitionOutcome] = None
    state: AcquisitionState = AcquisitionState.IDLE
    transitions: List[Tuple[AcquisitionState, float]] = field(default_factory=list)
    process_info: str = ""
    detail: str = ""
    elapsed_s: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome == AcquisitionOutcome.SUCCEEDED

    def fail(self, outcome: AcquisitionOutcome, detail: str = "") -> AcquisitionState:
        self.outcome = outcome
        if detail:
            self.detail = detail
        return AcquisitionState.FAILED
