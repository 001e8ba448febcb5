# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the per-job report
      - debugging without full tracebacks
    """
    kind: str
    job: str
    task: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.task:
            lines.append(f"task={self.task}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class WorkflowError(ValueError):
    """The workflow definition is invalid (duplicate names, unknown needs, cycles, bad matrix)."""


class ConfigurationError(CIError):
    """A required piece of run configuration (e.g. the publish secret) is missing."""

    def __init__(self, message: str, *, job: str = "", task: str | None = None, **details):
        super().__init__(kind="configuration-error", job=job, task=task, message=message, details=details)


class InfrastructureError(CIError):
    """The external task could not be launched or communicated with."""

    def __init__(self, message: str, *, job: str = "", task: str | None = None, **details):
        super().__init__(kind="infrastructure-error", job=job, task=task, message=message, details=details)


@dataclass
class TaskFailure(Exception):
    job: str
    task: str
    cmd: str
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    note: str | None = None

    def __str__(self) -> str:
        msg = f"[{self.job}] task '{self.task}' failed (exit={self.exit_code}): {self.cmd}"
        if self.note:
            msg += f" ({self.note})"
        return msg
