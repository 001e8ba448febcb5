# job.py
from __future__ import annotations

from .model import JobInstance, JobState, TaskOutcome
from .tasks.runner import TaskRunner


def run_job_instance(instance: JobInstance, runner: TaskRunner) -> JobState:
    """
    Run the tasks of one job instance strictly in declared order.

    Fails fast: the first task that does not succeed stops the instance,
    unless that task is marked continue-on-failure. A cancelled task ends the
    instance as cancelled.
    """
    instance.state = JobState.RUNNING
    ctx = runner.context(instance)

    state = JobState.SUCCEEDED
    for task in instance.template.tasks:
        result = runner.run(task, ctx)
        instance.results.append(result)

        if result.outcome is TaskOutcome.CANCELLED:
            state = JobState.CANCELLED
            break
        if not result.outcome.ok and not result.continued:
            state = JobState.FAILED
            break

    instance.finalize(state)
    return state
