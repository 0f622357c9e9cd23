"""Tests for workload orchestration."""

import asyncio
import json

import pytest
from container_diag.config import CollectorConfig
from container_diag.diagnostics.app_info import (
    BACKSTAGE_JSON_PATH,
    BUILD_METADATA_PATH,
    DYNAMIC_PLUGINS_CONFIG_PATH,
)
from container_diag.diagnostics.collector import (
    ContainerStatus,
    WorkloadCollector,
    WorkloadSpec,
    collect_workloads,
)
from container_diag.heapdump import AcquisitionOutcome
from container_diag.heapdump.acquirer import COLLECTION_FAILED_FILE

from fakes import NODE_CMDLINE, FakeCluster, FakeContainer

PRIMARY = "backstage-backend"

NODE_PROCESSES = [
    {"pid": 1, "ppid": 0, "name": "node", "cmdline": NODE_CMDLINE, "rss": 512000, "vsz": 1200000},
]
SIDECAR_PROCESSES = [
    {"pid": 1, "ppid": 0, "name": "envoy", "cmdline": "envoy -c /etc/envoy.yaml", "rss": 9000, "vsz": 30000},
]


def make_config(**overrides):
    values = dict(
        command_timeout=5,
        heap_dump_grace_period=0.3,
        poll_interval=0.05,
        copy_timeout=5,
        primary_container=PRIMARY,
    )
    values.update(overrides)
    return CollectorConfig(**values)


def two_container_pod():
    return {
        PRIMARY: FakeContainer(processes=NODE_PROCESSES),
        "sidecar": FakeContainer(processes=SIDECAR_PROCESSES),
    }


class RaisingContainer(FakeContainer):
    """Container whose executor raises instead of returning."""

    def handle(self, command, script_args):
        raise RuntimeError("exec transport broke")


class CancellingContainer(FakeContainer):
    """Container that requests cancellation once it has been listed."""

    def __init__(self, event, **kwargs):
        super().__init__(**kwargs)
        self.event = event

    def handle(self, command, script_args):
        if "@@self" in command:
            self.event.set()
        return super().handle(command, script_args)


class TestProcessCollection:
    """Tests for process listing across containers."""

    @pytest.mark.asyncio
    async def test_every_container_gets_a_file(self, tmp_path):
        """Each container should get its own processes file."""
        cluster = FakeCluster({"pod-0": two_container_pod()})
        report = await WorkloadCollector(cluster, make_config(), tmp_path).collect("rhdh", "app=rhdh")

        primary = tmp_path / "processes" / "pod=pod-0" / f"container={PRIMARY}.txt"
        sidecar = tmp_path / "processes" / "pod=pod-0" / "container=sidecar.txt"
        assert "node packages/backend" in primary.read_text()
        assert "envoy -c /etc/envoy.yaml" in sidecar.read_text()
        assert "packages/backend" not in sidecar.read_text()

        assert report.pods == ["pod-0"]
        assert [c.status for c in report.containers] == [ContainerStatus.COLLECTED] * 2
        assert not (tmp_path / "heap-dumps").exists()

    @pytest.mark.asyncio
    async def test_app_info_from_first_pod(self, tmp_path):
        """Application metadata should be collected once, from the primary container."""
        cluster = FakeCluster({"pod-0": two_container_pod(), "pod-1": two_container_pod()})
        await WorkloadCollector(cluster, make_config(), tmp_path).collect("rhdh", "app=rhdh")

        assert "uid=1001" in (tmp_path / "app-container-userid.txt").read_text()
        assert "NODE_ENV=production" in (tmp_path / "env-vars.txt").read_text()
        assert "v20" in (tmp_path / "runtime-version.txt").read_text()
        pod1_calls = cluster.executors[("rhdh", "pod-1", PRIMARY)].calls
        assert all(cmd != "id" for cmd, _ in pod1_calls)

    @pytest.mark.asyncio
    async def test_version_metadata_from_env(self, tmp_path):
        """Version variables should be written as JSON without reading image files."""
        env = {"BACKSTAGE_VERSION": "1.36.1", "RHDH_VERSION": "1.6.0", "UPSTREAM_REPO": "backstage/backstage"}
        pod = {PRIMARY: FakeContainer(processes=NODE_PROCESSES, env=env)}
        cluster = FakeCluster({"pod-0": pod})
        await WorkloadCollector(cluster, make_config(), tmp_path).collect("rhdh", "app=rhdh")

        backstage = json.loads((tmp_path / "backstage.json").read_text())
        assert backstage == {"version": "1.36.1", "source": "BACKSTAGE_VERSION env var"}
        build = json.loads((tmp_path / "build-metadata.json").read_text())
        assert build["rhdh_version"] == "1.6.0"
        assert build["upstream_repo"] == "backstage/backstage"
        assert build["midstream_repo"] == ""
        assert build["source"] == "environment variables"

        calls = cluster.executors[("rhdh", "pod-0", PRIMARY)].calls
        assert all(BACKSTAGE_JSON_PATH not in args for _, args in calls)

    @pytest.mark.asyncio
    async def test_version_metadata_from_image_files(self, tmp_path):
        """Without version variables the bundled files should be read."""
        files = {
            BACKSTAGE_JSON_PATH: '{"version": "1.35.0"}\n',
            BUILD_METADATA_PATH: '{"title": "RHDH", "card": ["RHDH Version: 1.5.1"]}\n',
            DYNAMIC_PLUGINS_CONFIG_PATH: "dynamicPlugins:\n  frontend: {}\n",
        }
        pod = {PRIMARY: FakeContainer(processes=NODE_PROCESSES, app_files=files)}
        await WorkloadCollector(FakeCluster({"pod-0": pod}), make_config(), tmp_path).collect(
            "rhdh", "app=rhdh"
        )

        assert "1.35.0" in (tmp_path / "backstage.json").read_text()
        assert json.loads((tmp_path / "build-metadata.json").read_text()) == ["RHDH Version: 1.5.1"]
        assert "dynamicPlugins" in (tmp_path / "app-config.dynamic-plugins.yaml").read_text()
        assert "total 0" in (tmp_path / "dynamic-plugins-root.fs.txt").read_text()

    @pytest.mark.asyncio
    async def test_missing_image_files_recorded(self, tmp_path):
        """Unreadable metadata files should hold the failure record and not stop collection."""
        pod = {PRIMARY: FakeContainer(processes=NODE_PROCESSES)}
        report = await WorkloadCollector(FakeCluster({"pod-0": pod}), make_config(), tmp_path).collect(
            "rhdh", "app=rhdh"
        )

        assert "No such file or directory" in (tmp_path / "backstage.json").read_text()
        assert "No such file or directory" in (tmp_path / "app-config.dynamic-plugins.yaml").read_text()
        assert report.containers[0].status == ContainerStatus.COLLECTED

    @pytest.mark.asyncio
    async def test_unreachable_container_degraded(self, tmp_path):
        """A container that cannot be reached should get a failure note."""
        cluster = FakeCluster(
            {"pod-0": {PRIMARY: FakeContainer(processes=NODE_PROCESSES), "broken": FakeContainer(reachable=False)}}
        )
        report = await WorkloadCollector(cluster, make_config(), tmp_path).collect("rhdh", "app=rhdh")

        text = (tmp_path / "processes" / "pod=pod-0" / "container=broken.txt").read_text()
        assert "Failed to collect processes from container broken" in text
        assert "Command failed or timed out" in text
        assert report.containers[1].status == ContainerStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_exception_becomes_placeholder(self, tmp_path):
        """An unexpected error should be written down and collection continue."""
        cluster = FakeCluster(
            {"pod-0": {"broken": RaisingContainer(), PRIMARY: FakeContainer(processes=NODE_PROCESSES)}}
        )
        report = await WorkloadCollector(cluster, make_config(), tmp_path).collect("rhdh", "app=rhdh")

        text = (tmp_path / "processes" / "pod=pod-0" / "container=broken.txt").read_text()
        assert "exec transport broke" in text
        assert report.containers[0].status == ContainerStatus.ERROR
        assert report.containers[1].status == ContainerStatus.COLLECTED

    @pytest.mark.asyncio
    async def test_no_pods(self, tmp_path):
        """No running pods should produce an empty report."""
        report = await WorkloadCollector(FakeCluster({}), make_config(), tmp_path).collect("rhdh", "app=x")
        assert report.pods == []
        assert report.containers == []
        assert not (tmp_path / "heap-dumps" / "no-pods.txt").exists()

    @pytest.mark.asyncio
    async def test_no_containers(self, tmp_path):
        """A pod without containers should be noted."""
        cluster = FakeCluster({"pod-0": {}})
        await WorkloadCollector(cluster, make_config(), tmp_path).collect("rhdh", "app=rhdh")
        assert (tmp_path / "processes" / "pod=pod-0" / "no-containers.txt").exists()


class TestHeapDumpCollection:
    """Tests for heap dump collection within a workload."""

    @pytest.mark.asyncio
    async def test_only_primary_container(self, tmp_path):
        """Heap dumps should be attempted for the primary container only."""
        pod = two_container_pod()
        cluster = FakeCluster({"pod-0": pod})
        config = make_config(with_heap_dumps=True)

        report = await WorkloadCollector(cluster, config, tmp_path).collect("rhdh", "app=rhdh")

        primary, sidecar = report.containers
        assert primary.heap_attempt.outcome == AcquisitionOutcome.SUCCEEDED
        assert sidecar.heap_attempt is None
        assert pod["sidecar"].signals == []

        heap_dir = tmp_path / "heap-dumps" / "pod=pod-0" / f"container={PRIMARY}"
        assert len(list(heap_dir.glob("*.heapsnapshot"))) == 1
        assert not (tmp_path / "heap-dumps" / "pod=pod-0" / "container=sidecar").exists()

    @pytest.mark.asyncio
    async def test_pod_spec_once_per_pod(self, tmp_path):
        """pod-spec.yaml should be captured once for each pod."""
        cluster = FakeCluster({"pod-0": two_container_pod(), "pod-1": two_container_pod()})
        config = make_config(with_heap_dumps=True)

        await WorkloadCollector(cluster, config, tmp_path).collect("rhdh", "app=rhdh")

        assert cluster.pod_yaml_calls == ["pod-0", "pod-1"]
        for pod in ("pod-0", "pod-1"):
            assert (tmp_path / "heap-dumps" / f"pod={pod}" / "pod-spec.yaml").exists()

    @pytest.mark.asyncio
    async def test_failed_attempt_is_degraded(self, tmp_path):
        """A primary container without node should degrade, not error."""
        cluster = FakeCluster({"pod-0": {PRIMARY: FakeContainer(processes=SIDECAR_PROCESSES)}})
        config = make_config(with_heap_dumps=True)

        report = await WorkloadCollector(cluster, config, tmp_path).collect("rhdh", "app=rhdh")

        result = report.containers[0]
        assert result.status == ContainerStatus.DEGRADED
        assert result.heap_attempt.outcome == AcquisitionOutcome.NO_RUNTIME_PROCESS_FOUND
        heap_dir = tmp_path / "heap-dumps" / "pod=pod-0" / f"container={PRIMARY}"
        assert (heap_dir / COLLECTION_FAILED_FILE).exists()

    @pytest.mark.asyncio
    async def test_no_pods_marker(self, tmp_path):
        """With heap dumps enabled, an empty selector should leave a marker."""
        config = make_config(with_heap_dumps=True)
        await WorkloadCollector(FakeCluster({}), config, tmp_path).collect("rhdh", "app=x")
        assert (tmp_path / "heap-dumps" / "no-pods.txt").exists()


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, tmp_path):
        """A set event should stop collection before any container."""
        event = asyncio.Event()
        event.set()
        cluster = FakeCluster({"pod-0": two_container_pod()})

        report = await WorkloadCollector(cluster, make_config(), tmp_path, event).collect("rhdh", "app=rhdh")

        assert report.cancelled
        assert report.containers == []
        assert "cancelled" in report.summary

    @pytest.mark.asyncio
    async def test_cancel_between_containers(self, tmp_path):
        """Cancellation should take effect at the next container boundary."""
        event = asyncio.Event()
        cluster = FakeCluster(
            {
                "pod-0": {
                    PRIMARY: CancellingContainer(event, processes=NODE_PROCESSES),
                    "sidecar": FakeContainer(processes=SIDECAR_PROCESSES),
                }
            }
        )

        report = await WorkloadCollector(cluster, make_config(), tmp_path, event).collect("rhdh", "app=rhdh")

        assert report.cancelled
        assert [c.target.container for c in report.containers] == [PRIMARY]
        assert not (tmp_path / "processes" / "pod=pod-0" / "container=sidecar.txt").exists()


class TestCollectWorkloads:
    """Tests for collecting several workloads."""

    @pytest.mark.asyncio
    async def test_reports_in_order(self, tmp_path):
        """Each workload should get its own report and output root."""
        cluster = FakeCluster({"pod-0": two_container_pod()})
        workloads = [
            WorkloadSpec("ns-a", "app=a", tmp_path / "a"),
            WorkloadSpec("ns-b", "app=b", tmp_path / "b"),
        ]

        reports = await collect_workloads(cluster, make_config(max_parallel_workloads=1), workloads)

        assert [r.namespace for r in reports] == ["ns-a", "ns-b"]
        assert (tmp_path / "a" / "processes" / "pod=pod-0" / f"container={PRIMARY}.txt").exists()
        assert (tmp_path / "b" / "processes" / "pod=pod-0" / f"container={PRIMARY}.txt").exists()


class TestWorkloadReport:
    """Tests for report serialization."""

    @pytest.mark.asyncio
    async def test_to_json(self, tmp_path):
        """JSON output should list every container with its status."""
        cluster = FakeCluster({"pod-0": two_container_pod()})
        report = await WorkloadCollector(cluster, make_config(), tmp_path).collect("rhdh", "app=rhdh")

        data = json.loads(report.to_json())
        assert data["namespace"] == "rhdh"
        assert [c["container"] for c in data["containers"]] == [PRIMARY, "sidecar"]
        assert {c["status"] for c in data["containers"]} == {"collected"}
        assert "2 container(s)" in report.summary
