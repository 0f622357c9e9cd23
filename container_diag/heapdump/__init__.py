"""Signal-triggered heap snapshot acquisition."""

from .models import AcquisitionOutcome, AcquisitionState, HeapAcquisitionAttempt
from .acquirer import HeapSnapshotAcquirer
from .guidance import render_guidance

__all__ = [
    "AcquisitionOutcome",
    "AcquisitionState",
    "HeapAcquisitionAttempt",
    "HeapSnapshotAcquirer",
    "render_guidance",
]
