# runner.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field

from .config import Settings, load_settings
from .model import JobInstance, JobState, JobTemplate, TaskOutcome, format_point
from .scheduler import RunState, Scheduler
from .tasks.command import CancelToken, Executor
from .tasks.publish import Publisher
from .tasks.runner import TaskRunner
from .trigger import EventDescriptor, Trigger, classify
from .ui.console import Console, get_console

ERROR_KINDS = {
    TaskOutcome.FAILURE: "task-failure",
    TaskOutcome.INFRASTRUCTURE_ERROR: "infrastructure-error",
    TaskOutcome.CONFIGURATION_ERROR: "configuration-error",
    TaskOutcome.CANCELLED: "cancellation",
}

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_WORKFLOW = 2
EXIT_CANCELLED = 130


# ----------------------------------------------------------------------
# Report
# ----------------------------------------------------------------------

class TaskReport(BaseModel):
    name: str
    outcome: str
    exit_code: Optional[int] = None
    message: str = ""


class InstanceReport(BaseModel):
    label: str
    matrix: Dict[str, str] = Field(default_factory=dict)
    status: str
    tasks: List[TaskReport] = Field(default_factory=list)


class JobReport(BaseModel):
    name: str
    title: str
    status: str
    error_kind: Optional[str] = None
    skip_reason: Optional[str] = None
    failed_task: Optional[str] = None
    failed_instance: Optional[str] = None
    output: Optional[str] = None
    instances: List[InstanceReport] = Field(default_factory=list)


class PipelineResult(BaseModel):
    status: str  # succeeded | failed | cancelled | not-applicable
    trigger: Optional[Dict[str, object]] = None
    jobs: List[JobReport] = Field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.status == "failed":
            return EXIT_FAILED
        if self.status == "cancelled":
            return EXIT_CANCELLED
        return EXIT_OK

    def job(self, name: str) -> JobReport:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def statuses(self) -> Dict[str, str]:
        return {j.name: j.status for j in self.jobs}


def _instance_report(inst: JobInstance) -> InstanceReport:
    return InstanceReport(
        label=inst.label,
        matrix=inst.matrix,
        status=inst.state.value,
        tasks=[
            TaskReport(name=r.task, outcome=r.outcome.value, exit_code=r.exit_code, message=r.message)
            for r in inst.results
        ],
    )


def _job_report(template: JobTemplate, state: RunState) -> JobReport:
    status = state.outcomes.get(template.name, state.state(template.name))
    instances = state.instances_of(template.name)
    report = JobReport(
        name=template.name,
        title=template.display_name,
        status=status.value,
        instances=[_instance_report(i) for i in instances],
    )

    if status is JobState.SKIPPED:
        report.error_kind = "dependency-failure"
        report.skip_reason = state.skip_reasons.get(template.name)
    elif status in (JobState.FAILED, JobState.CANCELLED):
        for inst in instances:
            failure = inst.first_failure
            if failure is None or inst.state is JobState.SUCCEEDED:
                continue
            report.error_kind = ERROR_KINDS.get(failure.outcome, "task-failure")
            report.failed_task = failure.task
            report.failed_instance = format_point(inst.point) or inst.label
            report.output = failure.output
            break
        if report.error_kind is None:
            report.error_kind = "cancellation"
    return report


def build_report(jobs: List[JobTemplate], state: RunState) -> PipelineResult:
    if state.cancelled:
        status = "cancelled"
    else:
        status = "succeeded" if state.succeeded else "failed"

    trigger = None
    if state.trigger is not None:
        t = state.trigger
        trigger = {
            "kind": t.kind.value,
            "ref": t.ref,
            "ref_name": t.ref_name,
            "is_prerelease": t.is_prerelease,
            "is_secret_available": t.is_secret_available,
        }
    return PipelineResult(status=status, trigger=trigger, jobs=[_job_report(j, state) for j in jobs])


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> List[JobTemplate]:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> List[JobTemplate]
      - JOBS = [JobTemplate, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"releaseci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        jobs = globals_dict["workflow"]()
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if not isinstance(jobs, list) or not all(isinstance(j, JobTemplate) for j in jobs):
        raise TypeError(
            "Workflow must return/define a List[JobTemplate]. "
            "Define workflow() -> List[JobTemplate] or JOBS = [JobTemplate, ...]."
        )
    return jobs


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    jobs: List[JobTemplate],
    event: Union[EventDescriptor, Trigger, None],
    *,
    settings: Optional[Settings] = None,
    repo_root: str | Path = ".",
    environ: Optional[Mapping[str, str]] = None,
    executor: Optional[Executor] = None,
    publisher: Optional[Publisher] = None,
    cancel: Optional[CancelToken] = None,
    max_workers: int | None = None,
    console: Optional[Console] = None,
    workflow_name: str = "workflow",
) -> PipelineResult:
    """
    Classify the event, run every job in dependency order and report.

    An event that does not trigger the pipeline yields status
    "not-applicable" and runs nothing. An invalid workflow raises
    WorkflowError before any task starts.
    """
    settings = settings or load_settings(environ)
    console = console or get_console()

    if isinstance(event, EventDescriptor):
        trigger = classify(event, main_branch=settings.main_branch)
        if trigger is None:
            console.print_not_applicable(f"{event.event_type} {event.ref}")
            return PipelineResult(status="not-applicable")
    else:
        trigger = event

    runner = TaskRunner(
        repo_root=repo_root,
        trigger=trigger,
        settings=settings,
        environ=environ,
        executor=executor,
        publisher=publisher,
        cancel=cancel,
        console=console,
    )
    scheduler = Scheduler(jobs, runner, max_workers=max_workers, console=console)

    console.print_run_started(
        trigger=trigger.describe() if trigger else "manual",
        workflow=workflow_name,
        job_count=len(jobs),
    )
    state = scheduler.run(trigger)
    return build_report(jobs, state)
