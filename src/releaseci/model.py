# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class TaskKind(str, Enum):
    TOOLCHAIN_SETUP = "toolchain-setup"
    RUN_COMMAND = "run-command"
    UPLOAD_ARTIFACT = "upload-artifact"
    PUBLISH = "publish"


class TaskOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    INFRASTRUCTURE_ERROR = "infrastructure-error"
    CONFIGURATION_ERROR = "configuration-error"
    CANCELLED = "cancelled"

    @property
    def ok(self) -> bool:
        return self is TaskOutcome.SUCCESS


class JobState(str, Enum):
    PENDING = "pending"
    WAITING = "waiting-on-deps"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {JobState.SUCCEEDED, JobState.FAILED, JobState.SKIPPED, JobState.CANCELLED}
)


# A matrix point is an ordered tuple of (axis, value) pairs so it can be hashed
# and printed in declaration order.
MatrixPoint = Tuple[Tuple[str, str], ...]


def format_point(point: MatrixPoint) -> str:
    if not point:
        return ""
    return ", ".join(f"{k}={v}" for k, v in point)


@dataclass(frozen=True)
class TaskSpec:
    """A single external task inside a CI job."""
    name: str
    kind: TaskKind = TaskKind.RUN_COMMAND
    run: str = ""
    cwd: str | None = None
    continue_on_failure: bool = False
    timeout: float | None = None
    # kind specific arguments (toolchain, components, path, uploader, ...)
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class JobTemplate:
    """
    A CI job before matrix expansion: tasks + dependencies + matrix axes.

    `needs` lists job names that must all succeed (every matrix instance of
    them) before any instance of this job starts.
    """
    name: str
    tasks: list[TaskSpec]
    needs: list[str] = field(default_factory=list)
    matrix_axes: Dict[str, List[str]] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    title: Optional[str] = None
    # the release gate must need every other job in the workflow
    release_gate: bool = False

    @property
    def display_name(self) -> str:
        return self.title or self.name


@dataclass
class TaskResult:
    task: str
    outcome: TaskOutcome
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    message: str = ""
    continued: bool = False

    @property
    def output(self) -> str:
        parts = [p for p in (self.message, self.stdout, self.stderr) if p]
        return "\n".join(parts)


@dataclass
class JobInstance:
    """One concrete job produced from a template and one matrix point."""
    template: JobTemplate
    point: MatrixPoint = ()
    index: int = 0
    state: JobState = JobState.PENDING
    results: list[TaskResult] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.template.name

    @property
    def key(self) -> Tuple[str, MatrixPoint]:
        return (self.template.name, self.point)

    @property
    def label(self) -> str:
        if not self.point:
            return self.template.name
        return f"{self.template.name} ({format_point(self.point)})"

    @property
    def matrix(self) -> Dict[str, str]:
        return dict(self.point)

    @property
    def first_failure(self) -> TaskResult | None:
        failures = [r for r in self.results if not r.outcome.ok]
        for r in failures:
            if not r.continued:
                return r
        return failures[0] if failures else None

    def finalize(self, state: JobState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"job instance {self.label} already finalized as {self.state.value}")
        self.state = state
