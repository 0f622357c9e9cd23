"""Click CLI for the container diagnostics collector.

Commands:
- collect: process lists (and optionally heap dumps) for one workload
- collect-many: several workloads, PROS (or --max-parallel) at a time
- processes: print the process table of one container
- heap-dump: one heap snapshot attempt against one container
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from container_diag import __version__
from container_diag.config import CollectorConfig
from container_diag.diagnostics.collector import (
    WorkloadCollector,
    WorkloadReport,
    WorkloadSpec,
    build_cluster,
    collect_workloads,
)
from container_diag.diagnostics.layout import ArtifactTree
from container_diag.diagnostics.logger import setup_logging
from container_diag.heapdump import HeapSnapshotAcquirer
from container_diag.kube import ContainerTarget, resolve_kubectl
from container_diag.procfs import ProcessSnapshotReader, render_snapshot
from container_diag.utils.errors import ConfigurationError, KubectlNotFoundError

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = "./must-gather"


def _load_config(ctx, **overrides) -> CollectorConfig:
    try:
        config = CollectorConfig.from_env(**overrides)
        return config.model_copy(update={"kubectl": resolve_kubectl(config.kubectl)})
    except (ConfigurationError, KubectlNotFoundError) as e:
        console.print(f"[red]Error: {e}[/]")
        ctx.exit(2)


def _install_cancel_handler(event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, event.set)
        loop.add_signal_handler(signal.SIGTERM, event.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; cancellation disabled")


def _warn_heap_dumps(config: CollectorConfig) -> None:
    if config.with_heap_dumps:
        console.print(
            f"[yellow]Heap dumps enabled: each {config.primary_container} container "
            f"may take up to {config.heap_dump_grace_period:g}s[/]"
        )


def _print_report(report: WorkloadReport) -> None:
    where = f"{report.namespace} with labels: {report.label_selector}"
    if not report.pods:
        console.print(f"[yellow]No running pods found in {where}[/]")
        return
    if not report.containers:
        if report.cancelled:
            console.print(f"[yellow]Collection cancelled before any container in {where}[/]")
        else:
            console.print(f"[yellow]No containers found in running pods in {where}[/]")
        return

    table = Table(title=f"{report.namespace} ({report.summary})")
    table.add_column("Pod")
    table.add_column("Container")
    table.add_column("Processes")
    table.add_column("Heap dump")
    table.add_column("Status")

    for c in report.containers:
        status_color = {"collected": "green", "degraded": "yellow", "error": "red"}[c.status.value]
        heap = c.heap_attempt.outcome.value if c.heap_attempt and c.heap_attempt.outcome else "-"
        table.add_row(
            c.target.pod,
            c.target.container,
            "ok" if c.processes_ok else "failed",
            heap,
            f"[{status_color}]{c.status.value}[/]",
        )

    console.print(table)
    if report.cancelled:
        console.print("[yellow]Collection was cancelled; results are partial[/]")
    console.print(f"Output: {Path(report.output_root).resolve()}")


@click.group()
@click.version_option(version=__version__)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--log-level",
    envvar="LOG_LEVEL",
    default="info",
    help="Log level (debug, info, warning, error, trace)",
)
@click.pass_context
def cli(ctx, debug: bool, log_level: str):
    """Collect diagnostics from live containers without an in-pod agent."""
    ctx.ensure_object(dict)
    setup_logging(level="DEBUG" if debug else log_level)


@cli.command()
@click.argument("namespace")
@click.argument("selector")
@click.option(
    "--output-dir",
    envvar="BASE_COLLECTION_PATH",
    default=DEFAULT_OUTPUT_DIR,
    type=click.Path(file_okay=False),
    help="Per-workload output directory",
)
@click.option("--with-heap-dumps", is_flag=True, help="Collect heap dumps (slow, intrusive)")
@click.option("--primary-container", help="Container running the managed runtime")
@click.option("--heap-dump-timeout", type=float, help="Grace period after signaling (seconds)")
@click.option("--cmd-timeout", type=float, help="Timeout for each command (seconds)")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def collect(
    ctx,
    namespace: str,
    selector: str,
    output_dir: str,
    with_heap_dumps: bool,
    primary_container: Optional[str],
    heap_dump_timeout: Optional[float],
    cmd_timeout: Optional[float],
    as_json: bool,
):
    """Collect process lists and heap dumps for pods matching SELECTOR."""
    config = _load_config(
        ctx,
        with_heap_dumps=True if with_heap_dumps else None,
        primary_container=primary_container,
        heap_dump_grace_period=heap_dump_timeout,
        command_timeout=cmd_timeout,
    )

    async def _collect():
        cancel_event = asyncio.Event()
        _install_cancel_handler(cancel_event)
        collector = WorkloadCollector(build_cluster(config), config, output_dir, cancel_event)
        return await collector.collect(namespace, selector)

    _warn_heap_dumps(config)
    report = asyncio.run(_collect())

    if as_json:
        click.echo(report.to_json())
        return

    _print_report(report)


@cli.command("collect-many")
@click.option(
    "--workload",
    "workloads",
    multiple=True,
    required=True,
    type=(str, str, click.Path(file_okay=False)),
    metavar="NAMESPACE SELECTOR OUTPUT_DIR",
    help="Workload to collect; repeat for several",
)
@click.option("--with-heap-dumps", is_flag=True, help="Collect heap dumps (slow, intrusive)")
@click.option("--primary-container", help="Container running the managed runtime")
@click.option("--heap-dump-timeout", type=float, help="Grace period after signaling (seconds)")
@click.option("--cmd-timeout", type=float, help="Timeout for each command (seconds)")
@click.option("--max-parallel", type=int, help="Workloads collected at once (default: PROS or 5)")
@click.option("--json", "as_json", is_flag=True, help="Print the reports as JSON")
@click.pass_context
def collect_many(
    ctx,
    workloads,
    with_heap_dumps: bool,
    primary_container: Optional[str],
    heap_dump_timeout: Optional[float],
    cmd_timeout: Optional[float],
    max_parallel: Optional[int],
    as_json: bool,
):
    """Collect several workloads, a bounded number at a time."""
    config = _load_config(
        ctx,
        with_heap_dumps=True if with_heap_dumps else None,
        primary_container=primary_container,
        heap_dump_grace_period=heap_dump_timeout,
        command_timeout=cmd_timeout,
        max_parallel_workloads=max_parallel,
    )
    specs = [WorkloadSpec(ns, selector, Path(output)) for ns, selector, output in workloads]

    async def _collect():
        cancel_event = asyncio.Event()
        _install_cancel_handler(cancel_event)
        return await collect_workloads(build_cluster(config), config, specs, cancel_event)

    _warn_heap_dumps(config)
    if not as_json:
        console.print(f"Collecting {len(specs)} workload(s), {config.max_parallel_workloads} at a time")
    reports = asyncio.run(_collect())

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in reports], indent=2, default=str))
        return

    for report in reports:
        _print_report(report)


@cli.command()
@click.argument("namespace")
@click.argument("pod")
@click.argument("container")
@click.option("--cmd-timeout", type=float, help="Timeout for the listing (seconds)")
@click.pass_context
def processes(ctx, namespace: str, pod: str, container: str, cmd_timeout: Optional[float]):
    """Print the process table of one container."""
    config = _load_config(ctx, command_timeout=cmd_timeout)
    target = ContainerTarget(namespace, pod, container)

    async def _processes():
        reader = ProcessSnapshotReader(build_cluster(config).executor_for(target))
        return await reader.read(timeout=config.command_timeout)

    read = asyncio.run(_processes())
    if read.snapshot is None:
        console.print(f"[red]Failed to collect processes from {target}[/]")
        click.echo(read.error)
        sys.exit(1)

    click.echo(render_snapshot(read.snapshot, target))


@cli.command("heap-dump")
@click.argument("namespace")
@click.argument("pod")
@click.argument("container")
@click.option(
    "--output-dir",
    default=DEFAULT_OUTPUT_DIR,
    type=click.Path(file_okay=False),
    help="Output directory",
)
@click.option("--heap-dump-timeout", type=float, help="Grace period after signaling (seconds)")
@click.pass_context
def heap_dump(
    ctx,
    namespace: str,
    pod: str,
    container: str,
    output_dir: str,
    heap_dump_timeout: Optional[float],
):
    """Run one heap snapshot attempt against a container."""
    config = _load_config(ctx, heap_dump_grace_period=heap_dump_timeout)
    target = ContainerTarget(namespace, pod, container)

    async def _heap_dump():
        cluster = build_cluster(config)
        directory = ArtifactTree(output_dir).output_root(target)
        acquirer = HeapSnapshotAcquirer(cluster.executor_for(target), cluster, config, directory)
        return await acquirer.run()

    with console.status(f"Collecting heap dump (up to {config.heap_dump_grace_period:g}s)..."):
        attempt = asyncio.run(_heap_dump())

    if attempt.succeeded:
        console.print(f"[green]Heap dump collected:[/] {attempt.local_artifact_path}")
        if not attempt.snapshot_stable:
            console.print(
                f"[yellow]The snapshot was still growing; the full file was left at "
                f"{attempt.remote_artifact_path} in the container[/]"
            )
    else:
        console.print(f"[yellow]Heap dump not collected: {attempt.outcome.value}[/]")
        console.print("See collection-failed.txt in the output directory for guidance")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
