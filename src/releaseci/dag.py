# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import WorkflowError
from .matrix import points
from .model import JobTemplate, TaskKind


def build_dag(jobs: List[JobTemplate]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from job templates.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must succeed BEFORE this job)

    Returns:
      adj:   dependency -> set of dependents
      indeg: job -> number of distinct dependencies
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise WorkflowError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for job in jobs:
        for need in job.needs or []:
            if need not in name_set:
                raise WorkflowError(
                    f"Job '{job.name}' needs missing job '{need}'. "
                    f"Known jobs: {sorted(name_set)}"
                )
            if need == job.name:
                raise WorkflowError(f"Job '{job.name}' needs itself")
            # Edge need -> job.name (need must finish before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage only depends on earlier stages. Raises WorkflowError on a cycle.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(sorted(level))

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise WorkflowError(f"Job graph has a cycle. Stuck jobs: {remaining}")

    return levels


def check_release_gate(jobs: Iterable[JobTemplate]) -> None:
    """Publish tasks only in the release gate; at most one gate, and it must need every other job."""
    jobs = list(jobs)
    for j in jobs:
        if not j.release_gate and any(t.kind is TaskKind.PUBLISH for t in j.tasks):
            raise WorkflowError(f"Job '{j.name}' has a publish task but is not the release gate")

    gates = [j for j in jobs if j.release_gate]
    if len(gates) > 1:
        raise WorkflowError(f"Only one release gate allowed, found: {sorted(g.name for g in gates)}")
    if not gates:
        return

    gate = gates[0]
    others = {j.name for j in jobs if j is not gate}
    missing = sorted(others - set(gate.needs))
    if missing:
        raise WorkflowError(f"Release gate '{gate.name}' must need every verification job; missing: {missing}")


def validate(jobs: List[JobTemplate]) -> List[List[str]]:
    """
    Load-time validation: names, needs, acyclicity, matrix axes, release gate.

    Returns the topological levels so callers can print a plan.
    """
    for j in jobs:
        if not j.tasks:
            raise WorkflowError(f"Job '{j.name}' has no tasks")
        points(j)
    adj, indeg = build_dag(jobs)
    levels = topo_levels(adj, indeg)
    check_release_gate(jobs)
    return levels
