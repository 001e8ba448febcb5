"""Console output formatting utilities for releaseci."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from ..model import JobState, TaskOutcome, TaskResult

FAILURE_LABELS = {
    TaskOutcome.FAILURE: "TASK FAILED",
    TaskOutcome.INFRASTRUCTURE_ERROR: "INFRA ERROR",
    TaskOutcome.CONFIGURATION_ERROR: "CONFIG ERROR",
    TaskOutcome.CANCELLED: "TASK CANCELLED",
}


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show debug lines and full tracebacks
            quiet: If True, only errors and the final results are printed
        """
        self.debug = debug
        self.quiet = quiet
        # jobs report from worker threads
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(self, trigger: str, workflow: str, job_count: int) -> None:
        """Print run start information."""
        if self.quiet:
            return
        self._out("\nRUN STARTED", f"Trigger: {trigger}", f"Workflow: {workflow}", f"Jobs: {job_count}", "")

    def print_not_applicable(self, event: str) -> None:
        if self.quiet:
            return
        self._out(f"Event not applicable, pipeline not started: {event}")

    def print_stage(self, index: int, names: list[str]) -> None:
        self._out(f"=== Stage {index}: {names} ===")

    def print_instance(self, label: str, tasks: list[str]) -> None:
        self._out(f"  {label}: {' -> '.join(tasks)}")

    def print_job_state(self, name: str, state: JobState) -> None:
        if self.quiet:
            return
        self._out(f"JOB {state.value.upper()}: {name}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        if self.quiet:
            return
        self._out(f"JOB SKIPPED: {name} ({reason})")

    def print_task(self, label: str, name: str) -> None:
        """Print task start message."""
        if self.quiet:
            return
        self._out(f"[{label}] ▶ {name}")

    def print_task_result(self, label: str, result: TaskResult) -> None:
        if result.outcome is TaskOutcome.SUCCESS:
            if result.message:
                self.print_debug(f"[{label}] {result.task}: {result.message}")
            return
        prefix = FAILURE_LABELS.get(result.outcome, "TASK FAILED")
        lines = [f"{prefix}: [{label}] {result.task}"]
        if result.exit_code is not None:
            lines.append(f"Exit code: {result.exit_code}")
        if result.continued:
            lines.append("continue-on-failure: job keeps going")
        if result.message:
            lines.append(f"Error: {result.message.splitlines()[0]}")
        if self.debug and (result.stdout or result.stderr):
            lines.append(result.stdout.rstrip())
            lines.append(result.stderr.rstrip())
        self._out(*lines, err=True)

    def print_results(self, report) -> None:
        """Print final results summary (a PipelineResult)."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job in report.jobs:
            extra = f" [{job.error_kind}]" if job.error_kind else ""
            lines.append(f"  {job.name}: {job.status.upper()}{extra}")
            if job.failed_task:
                lines.append(f"    first failing task: {job.failed_task} ({job.failed_instance})")
                for out_line in (job.output or "").rstrip().splitlines()[-20:]:
                    lines.append(f"      | {out_line}")
        lines.append(f"PIPELINE: {report.status.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
