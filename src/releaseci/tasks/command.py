# tasks/command.py
from __future__ import annotations

import os
import re
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from ..errors import InfrastructureError, TaskFailure
from ..model import JobInstance, MatrixPoint, TaskSpec

# ${{ matrix.rust }} style references, same syntax as workflow files on GitHub
MATRIX_EXPR = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_-]+)\s*\}\}")


# ---------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------

class CancelToken:
    """
    Shared between the scheduler and every task process it launches.

    cancel() flips the flag and terminates every registered process; a process
    registered after cancellation is terminated straight away.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._procs: set[subprocess.Popen] = set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            procs = list(self._procs)
        for p in procs:
            _terminate(p)

    def register(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.add(proc)
            cancelled = self._event.is_set()
        if cancelled:
            _terminate(proc)

    def unregister(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.discard(proc)


def _terminate(proc: subprocess.Popen) -> None:
    # terminate() is a no-op once the process has been reaped
    if proc.poll() is None:
        proc.terminate()


# ---------------------------------------------------------------------
# Process execution
# ---------------------------------------------------------------------

@dataclass
class CommandOutput:
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    note: str = ""


Executor = Callable[[str, Path, Dict[str, str], Optional[float], Optional[CancelToken]], CommandOutput]


def subprocess_executor(
    cmd: str,
    cwd: Path,
    env: Dict[str, str],
    timeout: float | None = None,
    cancel: CancelToken | None = None,
) -> CommandOutput:
    """Run `cmd` through the shell. OSError (cannot launch) propagates to the caller."""
    proc = subprocess.Popen(
        cmd,
        shell=True,
        cwd=str(cwd),
        env=env,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    if cancel is not None:
        cancel.register(proc)
    try:
        try:
            out, err = proc.communicate(timeout=timeout)
            return CommandOutput(returncode=proc.returncode, stdout=out or "", stderr=err or "")
        except subprocess.TimeoutExpired:
            proc.kill()
            out, err = proc.communicate()
            return CommandOutput(returncode=proc.returncode, stdout=out or "", stderr=err or "", timed_out=True)
    finally:
        if cancel is not None:
            cancel.unregister(proc)


# ---------------------------------------------------------------------
# Per-instance context
# ---------------------------------------------------------------------

@dataclass
class TaskContext:
    """Everything a task of one job instance needs to launch its process."""
    instance: JobInstance
    cwd: Path
    env: Dict[str, str]
    executor: Executor
    cancel: CancelToken | None = None
    output_tail: int = 4000
    # read by publish tasks only
    trigger: object | None = None
    credential: str | None = None
    registry_token_env: str = "CARGO_REGISTRY_TOKEN"
    secret_env: str = "PUBLISH_SECRET"
    publisher: Callable | None = None

    @property
    def label(self) -> str:
        return self.instance.label

    def tail(self, text: str) -> str:
        if self.output_tail <= 0:
            return ""
        return text[-self.output_tail:]


def matrix_env(point: MatrixPoint) -> Dict[str, str]:
    return {f"MATRIX_{axis.upper().replace('-', '_')}": value for axis, value in point}


def render(text: str, ctx: TaskContext, task: TaskSpec) -> str:
    """Substitute ${{ matrix.<axis> }} references with the instance's matrix values."""
    values = ctx.instance.matrix

    def _sub(m: re.Match) -> str:
        axis = m.group(1)
        if axis not in values:
            raise InfrastructureError(
                f"unknown matrix axis '{axis}' referenced",
                job=ctx.label,
                task=task.name,
                known=sorted(values),
            )
        return values[axis]

    return MATRIX_EXPR.sub(_sub, text)


def resolve_cwd(ctx: TaskContext, task: TaskSpec) -> Path:
    cwd = (ctx.cwd / (task.cwd or ".")).resolve()
    if not cwd.exists():
        raise InfrastructureError(f"working directory not found: {cwd}", job=ctx.label, task=task.name)
    return cwd


def run_command(
    ctx: TaskContext,
    task: TaskSpec,
    cmd: str,
    *,
    env: Optional[Dict[str, str]] = None,
) -> CommandOutput:
    """
    Execute one command for `task`.

    Raises:
      TaskFailure: the command ran and exited nonzero (or timed out)
      InfrastructureError: the command could not be launched
    """
    cwd = resolve_cwd(ctx, task)
    proc_env = dict(ctx.env)
    if env:
        proc_env.update(env)

    try:
        out = ctx.executor(cmd, cwd, proc_env, task.timeout, ctx.cancel)
    except (OSError, subprocess.SubprocessError) as e:
        raise InfrastructureError(f"could not launch task: {e}", job=ctx.label, task=task.name, cmd=cmd) from e

    if out.returncode != 0 or out.timed_out:
        raise TaskFailure(
            job=ctx.label,
            task=task.name,
            cmd=cmd,
            exit_code=out.returncode,
            stdout=ctx.tail(out.stdout),
            stderr=ctx.tail(out.stderr),
            note=f"timed out after {task.timeout}s" if out.timed_out else None,
        )
    return out


def run_task(ctx: TaskContext, task: TaskSpec) -> CommandOutput:
    """Plain run-command task."""
    if not task.run.strip():
        raise InfrastructureError("task has no command", job=ctx.label, task=task.name)
    return run_command(ctx, task, render(task.run, ctx, task))


def base_env(instance: JobInstance, environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ if environ is None else environ)
    env.update(instance.template.env or {})
    env.update(matrix_env(instance.point))
    return env
