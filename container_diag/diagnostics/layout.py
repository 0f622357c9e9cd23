"""On-disk layout of collected artifacts.

Relative to a per-workload output root:
- processes/pod=<pod>/container=<container>.txt
- heap-dumps/pod=<pod>/pod-spec.yaml
- heap-dumps/pod=<pod>/container=<container>/...

Each (namespace, pod, container) key owns its paths exclusively; a second
key claiming the same path is a bug and raises ArtifactPathConflict.
"""

import logging
from pathlib import Path
from typing import Dict, Tuple, Union

from container_diag.kube.models import ContainerTarget
from container_diag.utils.errors import ArtifactPathConflict

logger = logging.getLogger(__name__)

PROCESSES_DIR = "processes"
HEAP_DUMPS_DIR = "heap-dumps"
POD_SPEC_FILE = "pod-spec.yaml"
NO_CONTAINERS_FILE = "no-containers.txt"
NO_PODS_FILE = "no-pods.txt"


def _component(value: str) -> str:
    if not value or value in (".", "..") or "/" in value or "\0" in value:
        raise ValueError(f"Unsafe path component: {value!r}")
    return value


def write_text(path: Path, text: str) -> Path:
    """Write an artifact, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.debug(f"Wrote {path}")
    return path


class ArtifactTree:
    """Per-workload artifact directory builder."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._owners: Dict[Path, Tuple[str, ...]] = {}

    def _claim(self, path: Path, key: Tuple[str, ...]) -> Path:
        owner = self._owners.setdefault(path, key)
        if owner != key:
            raise ArtifactPathConflict(
                f"{path} already belongs to {'/'.join(owner)}",
                key=key,
                owner=owner,
            )
        return path

    def processes_pod_dir(self, pod: str) -> Path:
        return self.root / PROCESSES_DIR / f"pod={_component(pod)}"

    def processes_file(self, target: ContainerTarget) -> Path:
        path = self.processes_pod_dir(target.pod) / f"container={_component(target.container)}.txt"
        return self._claim(path, target.key)

    def heap_dumps_dir(self) -> Path:
        return self.root / HEAP_DUMPS_DIR

    def heap_pod_dir(self, namespace: str, pod: str) -> Path:
        path = self.heap_dumps_dir() / f"pod={_component(pod)}"
        return self._claim(path, (namespace, pod))

    def output_root(self, target: ContainerTarget) -> Path:
        """Unique, created directory for one container's heap dump artifacts."""
        path = (
            self.heap_dumps_dir()
            / f"pod={_component(target.pod)}"
            / f"container={_component(target.container)}"
        )
        self._claim(path, target.key)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def claimed_keys(self) -> Dict[Path, Tuple[str, ...]]:
        return dict(self._owners)
