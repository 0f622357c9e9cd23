"""kubectl-backed cluster access.

Implements the collaborator interfaces the collector consumes:
- list_running_pods(namespace, label_selector)
- list_containers(namespace, pod)
plus pod spec capture and file copy out of a container. All calls are
bounded and fail-open: an unreachable API server yields empty lists and a
logged warning, never an exception.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import List, Optional

from container_diag.kube.executor import ContainerExecutor, ExecResult, KubectlRunner
from container_diag.kube.models import ContainerTarget
from container_diag.utils.errors import KubectlNotFoundError

logger = logging.getLogger(__name__)

# Preferred binary first, then the OpenShift client
KUBECTL_CANDIDATES = ("kubectl", "oc")


def resolve_kubectl(preferred: Optional[str] = None) -> str:
    """Find a kubectl-compatible binary on PATH.

    Args:
        preferred: Binary to try before the defaults

    Returns:
        Path to the binary

    Raises:
        KubectlNotFoundError: If none of the candidates is installed
    """
    candidates = [preferred] if preferred else []
    candidates.extend(c for c in KUBECTL_CANDIDATES if c != preferred)
    for candidate in candidates:
        path = shutil.which(candidate)
        if path:
            return path
    raise KubectlNotFoundError(preferred or KUBECTL_CANDIDATES[0])


class KubectlClient:
    """Cluster queries used by the orchestration loop."""

    def __init__(self, runner: KubectlRunner):
        self.runner = runner

    def executor_for(self, target: ContainerTarget) -> ContainerExecutor:
        return ContainerExecutor(self.runner, target)

    async def _get_json(self, args: List[str]) -> Optional[dict]:
        result = await self.runner.execute([*args, "-o", "json"])
        if not result.succeeded:
            logger.warning(f"kubectl query failed: {result.command}")
            return None
        try:
            return json.loads(result.output)
        except json.JSONDecodeError as e:
            logger.warning(f"Unparseable kubectl output for {result.command}: {e}")
            return None

    async def list_running_pods(self, namespace: str, label_selector: str) -> List[str]:
        """List pods in phase Running that match a label selector."""
        data = await self._get_json(
            [
                "get",
                "pods",
                "-n",
                namespace,
                "-l",
                label_selector,
                "--field-selector=status.phase=Running",
            ]
        )
        if not data:
            return []

        pods = []
        for item in data.get("items", []):
            if item.get("status", {}).get("phase") != "Running":
                continue
            name = item.get("metadata", {}).get("name")
            if name:
                pods.append(name)
        return pods

    async def list_containers(self, namespace: str, pod: str) -> List[str]:
        """List the (non-init) container names of a pod."""
        data = await self._get_json(["get", "pod", "-n", namespace, pod])
        if not data:
            return []
        containers = data.get("spec", {}).get("containers", [])
        return [c["name"] for c in containers if c.get("name")]

    async def get_pod_yaml(self, namespace: str, pod: str) -> ExecResult:
        """Capture a pod's full spec and status as YAML."""
        return await self.runner.execute(["get", "pod", "-n", namespace, pod, "-o", "yaml"])

    async def copy_from_container(
        self,
        target: ContainerTarget,
        remote_path: str,
        local_path: Path,
        timeout: Optional[float] = None,
    ) -> ExecResult:
        """Copy one file out of a container.

        A partially written local file is left in place on failure.
        """
        return await self.runner.execute(
            [
                "cp",
                "-n",
                target.namespace,
                f"{target.pod}:{remote_path}",
                str(local_path),
                "-c",
                target.container,
            ],
            timeout=timeout,
        )
