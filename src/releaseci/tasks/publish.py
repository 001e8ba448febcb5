# tasks/publish.py
from __future__ import annotations

from typing import Callable

from ..errors import ConfigurationError
from ..model import TaskSpec
from ..release import PublishMode, RealPublish, publish_command, select_publish_mode
from .command import CommandOutput, TaskContext, render, run_command

Publisher = Callable[[PublishMode, TaskContext, TaskSpec], CommandOutput]


def command_publisher(mode: PublishMode, ctx: TaskContext, task: TaskSpec) -> CommandOutput:
    """Run the registry command; only a real publish sees the credential."""
    cmd = publish_command(mode, render(task.run, ctx, task))
    env = None
    if isinstance(mode, RealPublish):
        env = {ctx.registry_token_env: mode.credential}
    else:
        # an inherited token must not reach the dry run
        ctx.env.pop(ctx.registry_token_env, None)
    return run_command(ctx, task, cmd, env=env)


def run_task(ctx: TaskContext, task: TaskSpec) -> CommandOutput:
    if not ctx.instance.template.release_gate:
        raise ConfigurationError(
            f"publish task outside the release gate in job '{ctx.instance.name}'",
            job=ctx.label,
            task=task.name,
        )
    mode = select_publish_mode(
        ctx.trigger,
        ctx.credential,
        job=ctx.label,
        task=task.name,
        secret_env=ctx.secret_env,
    )
    publisher = ctx.publisher or command_publisher
    out = publisher(mode, ctx, task)
    out.note = mode.describe()
    return out
