# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional

from .model import JobTemplate, TaskKind, TaskSpec
from .release import publish_task, release_job
from .tasks.toolchain import setup
from .tasks.upload import upload

__all__ = [
    "JobBuilder",
    "build",
    "job",
    "matrix",
    "publish",
    "release_job",
    "setup",
    "sh",
    "upload",
    "wf",
]

publish = publish_task


# ---------------------------------------------------------------------
# Task helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    continue_on_failure: bool = False,
    timeout: float | None = None,
) -> TaskSpec:
    """Create a shell (run-command) task."""
    return TaskSpec(
        name=name,
        kind=TaskKind.RUN_COMMAND,
        run=cmd,
        cwd=cwd,
        continue_on_failure=continue_on_failure,
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(**axes: Iterable[object]) -> Dict[str, List[str]]:
    """
    Matrix axes in declaration order.

    Example:
        job("test", ..., matrix=matrix(rust=["stable", "1.56.0"]))
    """
    return {k: [str(v) for v in values] for k, values in axes.items()}


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *tasks: TaskSpec,
    needs: Optional[List[str]] = None,
    matrix: Optional[Mapping[str, Iterable[object]]] = None,
    env: Optional[Dict[str, str]] = None,
    title: Optional[str] = None,
    cwd: str | None = None,  # default cwd applied to tasks missing cwd
) -> JobTemplate:
    if not tasks:
        raise ValueError(f"job({name!r}) must have at least one task")

    tasks_final = list(tasks)
    if cwd is not None:
        tasks_final = [t if t.cwd is not None else replace(t, cwd=cwd) for t in tasks_final]

    return JobTemplate(
        name=name,
        tasks=tasks_final,
        needs=list(needs or []),
        matrix_axes={k: [str(v) for v in values] for k, values in (matrix or {}).items()},
        env={k: str(v) for k, v in (env or {}).items()},
        title=title,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._tasks: list[TaskSpec] = []
        self._axes: dict[str, list[str]] = {}
        self._env: dict[str, str] = {}
        self._title: Optional[str] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def titled(self, title: str):
        self._title = title
        return self

    def over(self, axis: str, *values: object):
        self._axes[axis] = [str(v) for v in values]
        return self

    def with_toolchain(self, toolchain: str = "${{ matrix.rust }}", *components: str):
        self._tasks.append(setup(toolchain=toolchain, components=components))
        return self

    def define_task(self, name: str, run: str, cwd: str | None = None, *, continue_on_failure: bool = False):
        self._tasks.append(sh(name, run, cwd=cwd, continue_on_failure=continue_on_failure))
        return self

    def add(self, task: TaskSpec):
        self._tasks.append(task)
        return self

    def with_env(self, **env):
        # values end up in a process environment
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> JobTemplate:
        if not self._tasks:
            raise ValueError(f"Job '{self.name}' has no tasks")
        return JobTemplate(
            name=self.name,
            tasks=list(self._tasks),
            needs=list(self._needs),
            matrix_axes=dict(self._axes),
            env=dict(self._env),
            title=self._title,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_task(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def wf(*jobs: JobTemplate, release: Optional[JobTemplate] = None) -> List[JobTemplate]:
    """
    Workflow definition helper.

        def workflow():
            return wf(job(...), job(...), release=release_job([...]))
    """
    out = list(jobs)
    if release is not None:
        out.append(release)
    return out
