"""Tests for the dependency graph scheduler."""

import threading

import pytest
from conftest import FakeExecutor

from releaseci.config import Settings
from releaseci.dsl import job, sh
from releaseci.errors import WorkflowError
from releaseci.model import JobState
from releaseci.scheduler import RunState, Scheduler, aggregate
from releaseci.tasks import CancelToken, TaskRunner


def j(name, needs=None, axes=None, cmd=None):
    return job(name, sh(name, cmd or f"run-{name}"), needs=needs, matrix=axes)


def scheduler(jobs, executor, repo, environ, *, workers=4, cancel=None):
    runner = TaskRunner(repo_root=repo, executor=executor, environ=environ, settings=Settings(), cancel=cancel)
    return Scheduler(jobs, runner, max_workers=workers)


def first_index(events, prefix):
    return min(i for i, e in enumerate(events) if e.startswith(prefix))


def last_index(events, prefix):
    return max(i for i, e in enumerate(events) if e.startswith(prefix))


class TestOrdering:
    def test_dependents_start_after_every_instance_of_dependency(self, fake_executor, repo, base_env):
        jobs = [
            j("test", axes={"rust": ["stable", "beta", "1.56.0"]}, cmd="test-${{ matrix.rust }}"),
            j("publish", needs=["test"]),
        ]
        state = scheduler(jobs, fake_executor, repo, base_env).run()
        assert state.outcomes == {"test": JobState.SUCCEEDED, "publish": JobState.SUCCEEDED}

        events = fake_executor.events
        assert last_index(events, "end:test-") < first_index(events, "start:run-publish")
        assert len(state.instances_of("test")) == 3

    def test_diamond(self, fake_executor, repo, base_env):
        jobs = [j("a"), j("b", ["a"]), j("c", ["a"]), j("d", ["b", "c"])]
        state = scheduler(jobs, fake_executor, repo, base_env).run()
        events = fake_executor.events
        assert state.succeeded
        assert events.index("end:run-a") < first_index(events, "start:run-b")
        assert events.index("end:run-a") < first_index(events, "start:run-c")
        assert max(events.index("end:run-b"), events.index("end:run-c")) < events.index("start:run-d")

    def test_invalid_graph_rejected_before_running(self, fake_executor, repo, base_env):
        with pytest.raises(WorkflowError):
            scheduler([j("a", ["b"]), j("b", ["a"])], fake_executor, repo, base_env)
        assert fake_executor.calls == []


class TestConcurrency:
    def test_matrix_instances_run_concurrently(self, repo, base_env):
        barrier = threading.Barrier(2, timeout=5)
        executor = FakeExecutor(hooks={"build-": lambda cmd, env, cancel: barrier.wait()})
        jobs = [j("build", axes={"os": ["linux", "macos"]}, cmd="build-${{ matrix.os }}")]
        state = scheduler(jobs, executor, repo, base_env, workers=2).run()
        assert state.outcomes["build"] is JobState.SUCCEEDED

    def test_independent_jobs_run_concurrently(self, repo, base_env):
        barrier = threading.Barrier(2, timeout=5)
        hook = lambda cmd, env, cancel: barrier.wait()  # noqa: E731
        executor = FakeExecutor(hooks={"run-lint": hook, "run-test": hook})
        state = scheduler([j("lint"), j("test")], executor, repo, base_env, workers=2).run()
        assert state.succeeded


class TestFailurePropagation:
    def test_failed_dependency_skips_dependents_transitively(self, repo, base_env):
        executor = FakeExecutor(fail=lambda cmd, env: cmd == "run-a")
        jobs = [j("a"), j("b", ["a"]), j("c", ["b"]), j("other")]
        state = scheduler(jobs, executor, repo, base_env).run()

        assert state.outcomes == {
            "a": JobState.FAILED,
            "b": JobState.SKIPPED,
            "c": JobState.SKIPPED,
            "other": JobState.SUCCEEDED,
        }
        assert "run-b" not in executor.commands()
        assert "run-c" not in executor.commands()
        assert state.skip_reasons["b"] == "dependency 'a' failed"
        assert state.skip_reasons["c"] == "dependency 'b' skipped"
        assert not state.succeeded

    def test_one_failing_instance_fails_the_template(self, repo, base_env):
        executor = FakeExecutor(fail=lambda cmd, env: env.get("MATRIX_RUST") == "1.56.0")
        jobs = [j("clippy", axes={"rust": ["stable", "1.56.0"]}), j("publish", ["clippy"])]
        state = scheduler(jobs, executor, repo, base_env).run()
        assert [i.state for i in state.instances_of("clippy")] == [JobState.SUCCEEDED, JobState.FAILED]
        assert state.outcomes["clippy"] is JobState.FAILED
        assert state.outcomes["publish"] is JobState.SKIPPED

    def test_failure_does_not_change_unrelated_jobs(self, repo, base_env):
        jobs = [j("a"), j("b"), j("c", ["b"])]
        ok = scheduler(jobs, FakeExecutor(), repo, base_env).run()
        broken = scheduler(jobs, FakeExecutor(fail=lambda cmd, env: cmd == "run-a"), repo, base_env).run()
        assert ok.outcomes["b"] == broken.outcomes["b"] == JobState.SUCCEEDED
        assert ok.outcomes["c"] == broken.outcomes["c"] == JobState.SUCCEEDED

    def test_removing_a_leaf_job_keeps_other_outcomes(self, fake_executor, repo, base_env):
        full = [j("a"), j("b", ["a"]), j("c")]
        trimmed = [j("a"), j("b", ["a"])]
        s1 = scheduler(full, FakeExecutor(), repo, base_env).run()
        s2 = scheduler(trimmed, FakeExecutor(), repo, base_env).run()
        for name in ("a", "b"):
            assert s1.outcomes[name] == s2.outcomes[name]

    def test_runner_bug_is_reported_as_failure(self, repo, base_env):
        def explode(cmd, env, cancel):
            raise RuntimeError("boom")

        executor = FakeExecutor(hooks={"run-a": explode})
        state = scheduler([j("a"), j("b", ["a"])], executor, repo, base_env).run()
        assert state.outcomes == {"a": JobState.FAILED, "b": JobState.SKIPPED}


class TestCancellation:
    def test_cancel_marks_running_and_pending_jobs_cancelled(self, repo, base_env):
        token = CancelToken()

        def cancel_now(cmd, env, cancel):
            token.cancel()

        executor = FakeExecutor(hooks={"run-a": cancel_now}, fail=lambda cmd, env: cmd == "run-a")
        jobs = [j("a"), j("b"), j("c", ["a"])]
        state = scheduler(jobs, executor, repo, base_env, workers=1, cancel=token).run()

        assert state.cancelled is True
        assert state.outcomes == {
            "a": JobState.CANCELLED,
            "b": JobState.CANCELLED,
            "c": JobState.CANCELLED,
        }
        assert "run-b" not in executor.commands()
        assert not state.succeeded


class TestRunState:
    def test_outcome_written_once(self):
        state = RunState(None, ["a"])
        state.transition("a", JobState.WAITING)
        state.transition("a", JobState.RUNNING)
        state.transition("a", JobState.SUCCEEDED)
        with pytest.raises(RuntimeError):
            state.transition("a", JobState.FAILED)

    def test_cannot_run_before_waiting(self):
        state = RunState(None, ["a"])
        with pytest.raises(RuntimeError, match="invalid transition"):
            state.transition("a", JobState.RUNNING)

    def test_aggregate(self):
        class I:
            def __init__(self, state):
                self.state = state

        assert aggregate([I(JobState.SUCCEEDED), I(JobState.SUCCEEDED)]) is JobState.SUCCEEDED
        assert aggregate([I(JobState.SUCCEEDED), I(JobState.FAILED)]) is JobState.FAILED
        assert aggregate([I(JobState.CANCELLED), I(JobState.SUCCEEDED)]) is JobState.CANCELLED
        assert aggregate([I(JobState.CANCELLED), I(JobState.FAILED)]) is JobState.FAILED
