# tasks/upload.py
from __future__ import annotations

import shlex

from ..errors import TaskFailure
from ..model import TaskKind, TaskSpec
from .command import CommandOutput, TaskContext, render, resolve_cwd, run_command


def upload(
    name: str,
    path: str,
    uploader: str,
    *,
    continue_on_failure: bool = False,
    cwd: str | None = None,
) -> TaskSpec:
    """
    Create an upload-artifact task: hand the report at `path` to `uploader`.

    The path is appended to the uploader command as its last argument.
    """
    return TaskSpec(
        name=name,
        kind=TaskKind.UPLOAD_ARTIFACT,
        run=uploader,
        cwd=cwd,
        continue_on_failure=continue_on_failure,
        args={"path": path},
    )


def run_task(ctx: TaskContext, task: TaskSpec) -> CommandOutput:
    rel = render(str(task.args.get("path", "")), ctx, task)
    report = resolve_cwd(ctx, task) / rel
    if not rel or not report.is_file():
        raise TaskFailure(
            job=ctx.label,
            task=task.name,
            cmd=task.run,
            exit_code=None,
            note=f"report file not found: {report}",
        )

    cmd = f"{render(task.run, ctx, task)} {shlex.quote(str(report))}"
    return run_command(ctx, task, cmd)
