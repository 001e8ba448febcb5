"""Tests for workflow graph validation."""

import pytest

from releaseci.dag import build_dag, topo_levels, validate
from releaseci.dsl import job, publish, release_job, sh
from releaseci.errors import WorkflowError
from releaseci.workflows.crate import workflow as crate_workflow


def j(name, needs=None):
    return job(name, sh(name, f"echo {name}"), needs=needs)


class TestBuildDag:
    def test_edges_point_from_dependency_to_dependent(self):
        adj, indeg = build_dag([j("a"), j("b", ["a"]), j("c", ["a", "b"])])
        assert adj == {"a": {"b", "c"}, "b": {"c"}, "c": set()}
        assert indeg == {"a": 0, "b": 1, "c": 2}

    def test_duplicate_names(self):
        with pytest.raises(WorkflowError, match="Duplicate"):
            build_dag([j("a"), j("a")])

    def test_unknown_need(self):
        with pytest.raises(WorkflowError, match="missing job 'nope'"):
            build_dag([j("a", ["nope"])])

    def test_self_need(self):
        with pytest.raises(WorkflowError, match="needs itself"):
            build_dag([j("a", ["a"])])


class TestTopoLevels:
    def test_levels(self):
        jobs = [j("lint"), j("test", ["lint"]), j("docs"), j("ship", ["test", "docs"])]
        assert topo_levels(*build_dag(jobs)) == [["docs", "lint"], ["test"], ["ship"]]

    def test_cycle_is_rejected_at_load_time(self):
        jobs = [j("a", ["c"]), j("b", ["a"]), j("c", ["b"])]
        with pytest.raises(WorkflowError, match="cycle"):
            validate(jobs)


class TestReleaseGate:
    def test_gate_must_need_every_job(self):
        jobs = [j("check"), j("test"), release_job(["check"])]
        with pytest.raises(WorkflowError, match=r"missing: \['test'\]"):
            validate(jobs)

    def test_only_one_gate(self):
        jobs = [j("check"), release_job(["check"]), release_job(["check"], name="publish-2")]
        with pytest.raises(WorkflowError, match="Only one release gate"):
            validate(jobs)

    def test_publish_task_outside_the_gate(self):
        jobs = [j("check"), job("sneaky", publish()), release_job(["check", "sneaky"])]
        with pytest.raises(WorkflowError, match="sneaky.*not the release gate"):
            validate(jobs)

    def test_builtin_workflow_is_valid(self):
        levels = validate(crate_workflow())
        assert levels == [["check", "clippy", "fmt", "tarpaulin", "test"], ["publish"]]


def test_job_without_tasks_is_invalid():
    from releaseci.model import JobTemplate

    with pytest.raises(WorkflowError, match="no tasks"):
        validate([JobTemplate(name="empty", tasks=[])])
