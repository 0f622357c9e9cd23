"""Remote command execution with hard wall-clock timeouts.

Every container access goes through ContainerExecutor.execute, which never
raises: on timeout, non-zero exit or a missing binary it returns
succeeded=False and a synthetic failure record (command, UTC timestamp,
configured timeout) that can be written straight into an artifact.
"""

import asyncio
import logging
import shlex
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from container_diag.kube.models import ContainerTarget

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 90.0


@dataclass
class ExecResult:
    """Outcome of one bounded command execution."""

    output: str
    succeeded: bool
    command: str
    exit_code: Optional[int] = None
    timed_out: bool = False
    duration_s: float = 0.0

    def __iter__(self):
        # Allows `output, ok = await executor.execute(...)`
        yield self.output
        yield self.succeeded


def failure_record(
    command: str,
    timeout: float,
    reason: str = "",
    output: str = "",
    now: Optional[datetime] = None,
) -> str:
    """Build the synthetic artifact used in place of a failed command's output."""
    now = now or datetime.now(timezone.utc)
    lines = [
        f"Command failed or timed out: {command}",
        f"Timestamp: {now.strftime('%Y-%m-%dT%H:%M:%SZ')}",
        f"Timeout: {timeout:g}s",
    ]
    if reason:
        lines.append(f"Reason: {reason}")
    if output.strip():
        lines.append("Output:")
        lines.append(output.rstrip())
    return "\n".join(lines) + "\n"


class KubectlRunner:
    """Runs kubectl-compatible commands as bounded subprocesses.

    stdout and stderr are merged, like `cmd 2>&1`. On timeout the local
    process is killed and reaped before returning.

    Usage:
        runner = KubectlRunner("kubectl", command_timeout=90)
        result = await runner.execute(["get", "pods", "-n", "ns"])
        if result.succeeded:
            print(result.output)
    """

    def __init__(
        self,
        kubectl: str = "kubectl",
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ):
        """Initialize runner.

        Args:
            kubectl: kubectl-compatible binary (kubectl or oc)
            command_timeout: Default timeout in seconds
        """
        self.kubectl = kubectl
        self.command_timeout = command_timeout

    def build_argv(self, args: Sequence[str]) -> List[str]:
        return [self.kubectl, *args]

    async def execute(
        self,
        args: Sequence[str],
        timeout: Optional[float] = None,
    ) -> ExecResult:
        """Execute a kubectl command.

        Args:
            args: Arguments after the binary name
            timeout: Timeout in seconds (default: self.command_timeout)

        Returns:
            ExecResult; never raises for command failures
        """
        argv = self.build_argv(args)
        return await run_bounded(argv, timeout or self.command_timeout)


async def run_bounded(argv: Sequence[str], timeout: float) -> ExecResult:
    """Run argv as a subprocess, killing it once `timeout` seconds pass."""
    command = shlex.join(argv)
    start = time.monotonic()

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        logger.warning(f"Could not start command: {command}: {e}")
        return ExecResult(
            output=failure_record(command, timeout, reason=str(e)),
            succeeded=False,
            command=command,
            duration_s=time.monotonic() - start,
        )

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        logger.warning(f"Command timed out after {timeout:g}s: {command[:120]}")
        return ExecResult(
            output=failure_record(command, timeout, reason="timed out"),
            succeeded=False,
            command=command,
            timed_out=True,
            duration_s=time.monotonic() - start,
        )
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    output = stdout.decode("utf-8", errors="replace") if stdout else ""
    duration = time.monotonic() - start

    if proc.returncode != 0:
        logger.debug(f"Command exited {proc.returncode}: {command[:120]}")
        return ExecResult(
            output=failure_record(
                command,
                timeout,
                reason=f"exit code {proc.returncode}",
                output=output,
            ),
            succeeded=False,
            command=command,
            exit_code=proc.returncode,
            duration_s=duration,
        )

    return ExecResult(
        output=output,
        succeeded=True,
        command=command,
        exit_code=0,
        duration_s=duration,
    )


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


class ContainerExecutor:
    """Executes shell commands inside one named container.

    Usage:
        executor = ContainerExecutor(runner, ContainerTarget("ns", "pod-0", "app"))
        result = await executor.execute("cat /proc/meminfo")
    """

    def __init__(
        self,
        runner: KubectlRunner,
        target: ContainerTarget,
        command_timeout: Optional[float] = None,
    ):
        """Initialize executor.

        Args:
            runner: KubectlRunner used to reach the cluster
            target: Container to run commands in
            command_timeout: Default timeout (default: runner.command_timeout)
        """
        self.runner = runner
        self.target = target
        self.command_timeout = command_timeout or runner.command_timeout

    def exec_args(self, command: str, script_args: Sequence[str] = ()) -> List[str]:
        args = [
            "exec",
            "-n",
            self.target.namespace,
            self.target.pod,
            "-c",
            self.target.container,
            "--",
            "sh",
            "-c",
            command,
        ]
        if script_args:
            # Positional parameters avoid quoting values into the script
            args.append("--")
            args.extend(script_args)
        return args

    async def execute(
        self,
        command: str,
        timeout: Optional[float] = None,
        script_args: Sequence[str] = (),
    ) -> ExecResult:
        """Run a shell command in the container.

        Args:
            command: Shell script passed to `sh -c`
            timeout: Timeout in seconds (default: self.command_timeout)
            script_args: Values exposed to the script as $1, $2, ...

        Returns:
            ExecResult with output or a synthetic failure record
        """
        return await self.runner.execute(
            self.exec_args(command, script_args),
            timeout=timeout or self.command_timeout,
        )
