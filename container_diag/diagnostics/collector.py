"""Per-workload orchestration of container diagnostics.

For each running pod matching the workload's label selector, and for each of
its containers:
- the process list is always collected
- a heap snapshot is attempted for the primary container only, and only
  when heap dumps are enabled (pod-spec.yaml is captured once per pod)

Failures never leave this loop as exceptions. Each container produces an
explicit ContainerResult and at least one artifact, so the absence of data
is explainable from the output directory alone.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from container_diag.config import CollectorConfig
from container_diag.diagnostics.app_info import collect_app_info
from container_diag.diagnostics.layout import (
    NO_CONTAINERS_FILE,
    NO_PODS_FILE,
    POD_SPEC_FILE,
    ArtifactTree,
    write_text,
)
from container_diag.heapdump.acquirer import COLLECTION_FAILED_FILE, HeapSnapshotAcquirer
from container_diag.heapdump.models import HeapAcquisitionAttempt
from container_diag.kube.executor import KubectlRunner
from container_diag.kube.kubectl import KubectlClient
from container_diag.kube.models import ContainerTarget
from container_diag.procfs.reader import ProcessSnapshotReader
from container_diag.procfs.render import render_failure, render_snapshot

logger = logging.getLogger(__name__)


class ContainerStatus(str, Enum):
    """How completely a container was collected."""

    COLLECTED = "collected"
    DEGRADED = "degraded"
    ERROR = "error"


@dataclass
class ContainerResult:
    """Outcome of one container's collection."""

    target: ContainerTarget
    processes_file: Optional[Path] = None
    processes_ok: bool = False
    heap_attempt: Optional[HeapAcquisitionAttempt] = None
    errors: List[str] = field(default_factory=list)

    @property
    def status(self) -> ContainerStatus:
        if self.errors:
            return ContainerStatus.ERROR
        if not self.processes_ok or (self.heap_attempt and not self.heap_attempt.succeeded):
            return ContainerStatus.DEGRADED
        return ContainerStatus.COLLECTED


@dataclass
class WorkloadReport:
    """Everything one workload collection produced."""

    namespace: str
    label_selector: str
    output_root: Path
    pods: List[str] = field(default_factory=list)
    containers: List[ContainerResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def summary(self) -> str:
        counts = {s: 0 for s in ContainerStatus}
        for c in self.containers:
            counts[c.status] += 1
        parts = [f"{len(self.pods)} pod(s)", f"{len(self.containers)} container(s)"]
        parts.extend(f"{n} {s.value}" for s, n in counts.items() if n)
        if self.cancelled:
            parts.append("cancelled")
        return ", ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "label_selector": self.label_selector,
            "output_root": str(self.output_root),
            "pods": self.pods,
            "cancelled": self.cancelled,
            "containers": [
                {
                    "pod": c.target.pod,
                    "container": c.target.container,
                    "status": c.status.value,
                    "processes_file": str(c.processes_file) if c.processes_file else None,
                    "heap_dump": (
                        c.heap_attempt.outcome.value
                        if c.heap_attempt and c.heap_attempt.outcome
                        else None
                    ),
                    "heap_dump_complete": (
                        c.heap_attempt.snapshot_stable
                        if c.heap_attempt and c.heap_attempt.succeeded
                        else None
                    ),
                    "errors": c.errors,
                }
                for c in self.containers
            ],
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)


class WorkloadCollector:
    """Collects process lists and heap snapshots for one workload.

    Usage:
        collector = WorkloadCollector(cluster, config, "/must-gather/ns=app/deploy")
        report = await collector.collect("app", "app.kubernetes.io/name=backstage")
    """

    def __init__(
        self,
        cluster: KubectlClient,
        config: CollectorConfig,
        output_root,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        """Initialize collector.

        Args:
            cluster: Cluster access (pod listing, exec, copy)
            config: Collector configuration
            output_root: Per-workload output directory
            cancel_event: Checked between containers; set it to stop early
        """
        self.cluster = cluster
        self.config = config
        self.tree = ArtifactTree(output_root)
        self.cancel_event = cancel_event

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def collect(self, namespace: str, label_selector: str) -> WorkloadReport:
        """Collect every container of every running, selected pod."""
        report = WorkloadReport(
            namespace=namespace,
            label_selector=label_selector,
            output_root=self.tree.root,
        )

        pods = await self.cluster.list_running_pods(namespace, label_selector)
        report.pods = list(pods)
        if not pods:
            logger.warning(
                f"No running pod found in {namespace} namespace with labels: {label_selector} "
                "=> no data will be fetched from the running app"
            )
            if self.config.with_heap_dumps:
                write_text(self.tree.heap_dumps_dir() / NO_PODS_FILE, "No running pods found\n")
            return report

        if not self._cancelled():
            await self._collect_app_info(namespace, pods[0])

        for pod in pods:
            if self._cancelled():
                break
            await self._collect_pod(namespace, pod, report)

        if self._cancelled():
            report.cancelled = True
            logger.warning(f"Collection cancelled for {namespace} ({label_selector})")

        logger.info(f"Workload collection finished for {namespace}: {report.summary}")
        return report

    async def _collect_app_info(self, namespace: str, pod: str) -> None:
        target = ContainerTarget(namespace, pod, self.config.primary_container)
        try:
            await collect_app_info(self.cluster.executor_for(target), self.config, self.tree.root)
        except Exception as e:
            logger.warning(f"Failed to collect application metadata from {target}: {e}")

    async def _collect_pod(self, namespace: str, pod: str, report: WorkloadReport) -> None:
        logger.info(f"Collecting process list from containers in pod: {pod}")
        containers = await self.cluster.list_containers(namespace, pod)

        if self.config.with_heap_dumps:
            await self._capture_pod_spec(namespace, pod)

        if not containers:
            logger.warning(f"No containers found in pod {pod}")
            write_text(self.tree.processes_pod_dir(pod) / NO_CONTAINERS_FILE, "No containers found\n")
            return

        for container in containers:
            if self._cancelled():
                return
            target = ContainerTarget(namespace, pod, container)
            report.containers.append(await self._collect_container(target))

        logger.debug(f"Process collection completed for pod: {pod}")

    async def _capture_pod_spec(self, namespace: str, pod: str) -> None:
        try:
            pod_dir = self.tree.heap_pod_dir(namespace, pod)
            result = await self.cluster.get_pod_yaml(namespace, pod)
            write_text(pod_dir / POD_SPEC_FILE, result.output)
        except Exception as e:
            logger.warning(f"Failed to capture pod spec for {namespace}/{pod}: {e}")

    async def _collect_container(self, target: ContainerTarget) -> ContainerResult:
        result = ContainerResult(target=target)
        executor = self.cluster.executor_for(target)

        try:
            result.processes_file = self.tree.processes_file(target)
            reader = ProcessSnapshotReader(executor)
            read = await reader.read(timeout=self.config.command_timeout)
            result.processes_ok = read.succeeded
            if read.snapshot is None:
                text = render_failure(target, read.error)
            else:
                text = render_snapshot(read.snapshot, target)
            write_text(result.processes_file, text)
        except Exception as e:
            logger.warning(f"Failed to collect processes from {target}: {e}")
            result.errors.append(f"processes: {e}")
            self._write_placeholder(result.processes_file, render_failure(target, f"Error: {e}"))

        if self.config.with_heap_dumps:
            if target.container == self.config.primary_container:
                await self._collect_heap_dump(target, executor, result)
            else:
                logger.debug(
                    f"Skipping container {target.container} "
                    f"(only collecting heap dumps from {self.config.primary_container})"
                )

        return result

    async def _collect_heap_dump(self, target, executor, result: ContainerResult) -> None:
        logger.info(f"Processing {target.container} container in pod: {target.pod}")
        output_dir = None
        try:
            output_dir = self.tree.output_root(target)
            acquirer = HeapSnapshotAcquirer(executor, self.cluster, self.config, output_dir)
            result.heap_attempt = await acquirer.run()
        except Exception as e:
            logger.warning(f"Heap dump collection failed for {target}: {e}")
            result.errors.append(f"heap dump: {e}")
            if output_dir is not None:
                self._write_placeholder(
                    output_dir / COLLECTION_FAILED_FILE,
                    f"Heap dump collection for {target} stopped with an unexpected error:\n{e}\n",
                )

    @staticmethod
    def _write_placeholder(path: Optional[Path], text: str) -> None:
        if path is None:
            return
        try:
            write_text(path, text)
        except OSError as e:
            logger.warning(f"Could not write placeholder {path}: {e}")


@dataclass
class WorkloadSpec:
    """A workload to collect: where its pods are and where output goes."""

    namespace: str
    label_selector: str
    output_root: Path


async def collect_workloads(
    cluster: KubectlClient,
    config: CollectorConfig,
    workloads: List[WorkloadSpec],
    cancel_event: Optional[asyncio.Event] = None,
) -> List[WorkloadReport]:
    """Collect several workloads, at most config.max_parallel_workloads at once.

    Containers within a workload are always processed sequentially.
    """
    semaphore = asyncio.Semaphore(config.max_parallel_workloads)

    async def _one(spec: WorkloadSpec) -> WorkloadReport:
        async with semaphore:
            collector = WorkloadCollector(cluster, config, spec.output_root, cancel_event)
            return await collector.collect(spec.namespace, spec.label_selector)

    return list(await asyncio.gather(*(_one(w) for w in workloads)))


def build_cluster(config: CollectorConfig) -> KubectlClient:
    """Cluster client wired with the configured binary and timeout."""
    return KubectlClient(KubectlRunner(config.kubectl, command_timeout=config.command_timeout))
