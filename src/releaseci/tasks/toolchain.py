# tasks/toolchain.py
from __future__ import annotations

import shlex
from typing import Iterable

from ..model import TaskKind, TaskSpec
from .command import CommandOutput, TaskContext, render, run_command

TOOLCHAIN_ENV = "RUSTUP_TOOLCHAIN"


# ---------------------------------------------------------------------
# Toolchain setup helper
# ---------------------------------------------------------------------

def setup(
    name: str = "Install toolchain",
    *,
    toolchain: str = "${{ matrix.rust }}",
    components: Iterable[str] = (),
    profile: str = "minimal",
    run: str = "",
) -> TaskSpec:
    """
    Create a toolchain-setup task.

    Without `run`, installs `toolchain` with rustup and adds `components`.
    The selected toolchain is exported to every later task of the same job
    instance (override semantics).
    """
    return TaskSpec(
        name=name,
        kind=TaskKind.TOOLCHAIN_SETUP,
        run=run,
        args={"toolchain": toolchain, "components": list(components), "profile": profile},
    )


def commands_for(toolchain: str, components: list[str], profile: str) -> list[str]:
    tc = shlex.quote(toolchain)
    cmds = [f"rustup toolchain install {tc} --profile {shlex.quote(profile)}"]
    for c in components:
        cmds.append(f"rustup component add {shlex.quote(c)} --toolchain {tc}")
    return cmds


# ---------------------------------------------------------------------
# Toolchain setup execution
# ---------------------------------------------------------------------

def run_task(ctx: TaskContext, task: TaskSpec) -> CommandOutput:
    toolchain = render(str(task.args.get("toolchain", "stable")), ctx, task)
    components = [render(str(c), ctx, task) for c in task.args.get("components", [])]
    profile = str(task.args.get("profile", "minimal"))

    if task.run.strip():
        cmds = [render(task.run, ctx, task)]
    else:
        cmds = commands_for(toolchain, components, profile)

    stdout: list[str] = []
    stderr: list[str] = []
    for cmd in cmds:
        out = run_command(ctx, task, cmd)
        stdout.append(out.stdout)
        stderr.append(out.stderr)

    ctx.env[TOOLCHAIN_ENV] = toolchain
    return CommandOutput(returncode=0, stdout="".join(stdout), stderr="".join(stderr))
