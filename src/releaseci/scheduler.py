# scheduler.py
from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, Iterable, List, Optional, Tuple

from .dag import build_dag, validate
from .job import run_job_instance
from .matrix import expand
from .model import JobInstance, JobState, JobTemplate, MatrixPoint, TaskOutcome, TaskResult
from .tasks.command import CancelToken
from .tasks.runner import TaskRunner
from .trigger import Trigger
from .ui.console import Console, get_console

__all__ = ["CancelToken", "RunState", "Scheduler", "aggregate"]

TRANSITIONS = {
    JobState.PENDING: {JobState.WAITING},
    JobState.WAITING: {JobState.RUNNING, JobState.SKIPPED, JobState.CANCELLED},
    JobState.RUNNING: {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED},
}


class RunState:
    """
    State of one pipeline execution.

    `states` tracks the per-job state machine; `outcomes` receives exactly one
    terminal write per job name. Both are guarded by one lock.
    """

    def __init__(self, trigger: Optional[Trigger], names: Iterable[str]):
        self.trigger = trigger
        self.job_instances: Dict[Tuple[str, MatrixPoint], JobInstance] = {}
        self.outcomes: Dict[str, JobState] = {}
        self.states: Dict[str, JobState] = {n: JobState.PENDING for n in names}
        self.skip_reasons: Dict[str, str] = {}
        self.cancelled = False
        self._lock = threading.Lock()

    def state(self, name: str) -> JobState:
        with self._lock:
            return self.states[name]

    def transition(self, name: str, new: JobState) -> None:
        with self._lock:
            old = self.states[name]
            if new not in TRANSITIONS.get(old, set()):
                raise RuntimeError(f"invalid transition for job '{name}': {old.value} -> {new.value}")
            self.states[name] = new
            if new.terminal:
                if name in self.outcomes:
                    raise RuntimeError(f"outcome for job '{name}' already recorded")
                self.outcomes[name] = new

    def add_instances(self, instances: Iterable[JobInstance]) -> None:
        with self._lock:
            for inst in instances:
                self.job_instances[inst.key] = inst

    def instances_of(self, name: str) -> List[JobInstance]:
        with self._lock:
            found = [i for (n, _p), i in self.job_instances.items() if n == name]
        return sorted(found, key=lambda i: i.index)

    @property
    def succeeded(self) -> bool:
        with self._lock:
            return bool(self.outcomes) and all(s is JobState.SUCCEEDED for s in self.outcomes.values())


def aggregate(instances: Iterable[JobInstance]) -> JobState:
    """Fold instance states into the template's state: every instance must succeed."""
    states = [i.state for i in instances]
    if any(s is JobState.FAILED for s in states):
        return JobState.FAILED
    if any(s is not JobState.SUCCEEDED for s in states):
        return JobState.CANCELLED
    return JobState.SUCCEEDED


class Scheduler:
    """
    Runs job templates in dependency order.

    Every matrix instance is submitted to a shared thread pool as soon as its
    job's dependencies have all succeeded; a job whose dependency ends in any
    other state is skipped without running, and so are its dependents.
    Only the scheduling thread writes job states.
    """

    def __init__(
        self,
        jobs: List[JobTemplate],
        runner: TaskRunner,
        *,
        max_workers: int | None = None,
        console: Optional[Console] = None,
    ):
        self.jobs = list(jobs)
        self.levels = validate(self.jobs)
        self.by_name = {j.name: j for j in self.jobs}
        self.adj, self.indeg = build_dag(self.jobs)
        self.runner = runner
        self.max_workers = max_workers or runner.settings.max_workers
        self.console = console or get_console()

    @property
    def cancel_token(self) -> CancelToken:
        return self.runner.cancel

    def cancel(self) -> None:
        """Terminate running tasks; nothing new starts afterwards."""
        self.cancel_token.cancel()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, trigger: Optional[Trigger] = None) -> RunState:
        state = RunState(trigger, self.by_name)
        for name in self.by_name:
            state.transition(name, JobState.WAITING)

        remaining = dict(self.indeg)
        ready: List[str] = sorted(n for n, d in remaining.items() if d == 0)
        left: Dict[str, int] = {}
        in_flight: Dict[Future, JobInstance] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while ready or in_flight:
                while ready:
                    name = ready.pop(0)
                    if self.cancel_token.cancelled:
                        self._finish(state, name, JobState.CANCELLED, remaining, ready)
                        continue
                    instances = expand(self.by_name[name])
                    state.transition(name, JobState.RUNNING)
                    state.add_instances(instances)
                    self.console.print_job_state(name, JobState.RUNNING)
                    left[name] = len(instances)
                    for inst in instances:
                        in_flight[pool.submit(run_job_instance, inst, self.runner)] = inst

                if not in_flight:
                    break

                try:
                    done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    self.console.print_info("\nInterrupted, cancelling run...")
                    self.cancel()
                    continue

                for fut in sorted(done, key=lambda f: (in_flight[f].name, in_flight[f].index)):
                    inst = in_flight.pop(fut)
                    self._collect(fut, inst)
                    left[inst.name] -= 1
                    if left[inst.name] == 0:
                        final = aggregate(state.instances_of(inst.name))
                        self._finish(state, inst.name, final, remaining, ready)

        state.cancelled = self.cancel_token.cancelled
        return state

    def _collect(self, fut: Future, inst: JobInstance) -> None:
        exc = fut.exception()
        if exc is None:
            return
        # a bug below the task runner; report it like a launch failure
        self.console.print_exception(exc)
        inst.results.append(
            TaskResult(task="<runner>", outcome=TaskOutcome.INFRASTRUCTURE_ERROR, message=repr(exc))
        )
        if not inst.state.terminal:
            inst.state = JobState.FAILED

    def _finish(
        self,
        state: RunState,
        name: str,
        final: JobState,
        remaining: Dict[str, int],
        ready: List[str],
    ) -> None:
        state.transition(name, final)
        self.console.print_job_state(name, final)

        if final is JobState.SUCCEEDED:
            for child in sorted(self.adj[name]):
                remaining[child] -= 1
                if remaining[child] == 0 and state.state(child) is JobState.WAITING:
                    ready.append(child)
            ready.sort()
            return

        self._cascade(state, name, final)

    def _cascade(self, state: RunState, name: str, cause: JobState) -> None:
        """Everything downstream of `name` that has not started is skipped (or cancelled)."""
        stack = [(child, name, cause) for child in sorted(self.adj[name], reverse=True)]
        while stack:
            child, parent, why = stack.pop()
            if state.state(child) is not JobState.WAITING:
                continue
            if self.cancel_token.cancelled:
                state.transition(child, JobState.CANCELLED)
                self.console.print_job_state(child, JobState.CANCELLED)
            else:
                reason = f"dependency '{parent}' {why.value}"
                state.skip_reasons[child] = reason
                state.transition(child, JobState.SKIPPED)
                self.console.print_job_skipped(child, reason)
            stack.extend((c, child, state.state(child)) for c in sorted(self.adj[child], reverse=True))
