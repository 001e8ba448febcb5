# tasks/runner.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from ..config import Settings
from ..errors import ConfigurationError, InfrastructureError, TaskFailure
from ..model import JobInstance, TaskKind, TaskOutcome, TaskResult, TaskSpec
from ..trigger import Trigger
from ..ui.console import Console, get_console
from . import command, publish, toolchain, upload
from .command import CancelToken, CommandOutput, Executor, TaskContext, subprocess_executor
from .publish import Publisher

TaskFn = Callable[[TaskContext, TaskSpec], CommandOutput]

HANDLERS: Dict[TaskKind, TaskFn] = {
    TaskKind.RUN_COMMAND: command.run_task,
    TaskKind.TOOLCHAIN_SETUP: toolchain.run_task,
    TaskKind.UPLOAD_ARTIFACT: upload.run_task,
    TaskKind.PUBLISH: publish.run_task,
}


class TaskRunner:
    """
    Executes single tasks for job instances.

    A task's own failure never escapes as an exception: every outcome,
    including the runner being unable to launch the task, is folded into a
    TaskResult for the owning job to interpret.
    """

    def __init__(
        self,
        *,
        repo_root: str | Path = ".",
        trigger: Optional[Trigger] = None,
        settings: Optional[Settings] = None,
        environ: Optional[Mapping[str, str]] = None,
        executor: Optional[Executor] = None,
        publisher: Optional[Publisher] = None,
        cancel: Optional[CancelToken] = None,
        console: Optional[Console] = None,
    ):
        self.repo_root = Path(repo_root).resolve()
        self.trigger = trigger
        self.settings = settings or Settings()
        self.environ = dict(environ) if environ is not None else None
        self.executor = executor or subprocess_executor
        self.publisher = publisher
        self.cancel = cancel or CancelToken()
        self.console = console or get_console()

    def context(self, instance: JobInstance) -> TaskContext:
        env = command.base_env(instance, self.environ)
        credential = self.settings.secret(self.environ)
        # the raw secret only reaches the publish task through RealPublish
        env.pop(self.settings.secret_env, None)
        return TaskContext(
            instance=instance,
            cwd=self.repo_root,
            env=env,
            executor=self.executor,
            cancel=self.cancel,
            output_tail=self.settings.output_tail,
            trigger=self.trigger,
            credential=credential,
            registry_token_env=self.settings.registry_token_env,
            secret_env=self.settings.secret_env,
            publisher=self.publisher,
        )

    def run(self, task: TaskSpec, ctx: TaskContext) -> TaskResult:
        self.console.print_task(ctx.label, task.name)
        result = self._run(task, ctx)
        if result.outcome is not TaskOutcome.SUCCESS and task.continue_on_failure:
            result.continued = True
        self.console.print_task_result(ctx.label, result)
        return result

    def _run(self, task: TaskSpec, ctx: TaskContext) -> TaskResult:
        if self.cancel.cancelled:
            return TaskResult(task=task.name, outcome=TaskOutcome.CANCELLED, message="run cancelled")

        handler = HANDLERS.get(task.kind)
        if handler is None:
            return TaskResult(
                task=task.name,
                outcome=TaskOutcome.INFRASTRUCTURE_ERROR,
                message=f"no handler for task kind {task.kind!r}",
            )

        try:
            out = handler(ctx, task)
        except TaskFailure as e:
            outcome = TaskOutcome.CANCELLED if self.cancel.cancelled else TaskOutcome.FAILURE
            return TaskResult(
                task=task.name,
                outcome=outcome,
                exit_code=e.exit_code,
                stdout=e.stdout,
                stderr=e.stderr,
                message=str(e),
            )
        except ConfigurationError as e:
            return TaskResult(task=task.name, outcome=TaskOutcome.CONFIGURATION_ERROR, message=e.message)
        except InfrastructureError as e:
            return TaskResult(task=task.name, outcome=TaskOutcome.INFRASTRUCTURE_ERROR, message=str(e))

        return TaskResult(
            task=task.name,
            outcome=TaskOutcome.SUCCESS,
            exit_code=out.returncode,
            stdout=ctx.tail(out.stdout),
            stderr=ctx.tail(out.stderr),
            message=out.note,
        )
