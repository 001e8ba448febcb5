# matrix.py
from __future__ import annotations

from itertools import product
from typing import Iterable, List

from .errors import WorkflowError
from .model import JobInstance, JobTemplate, MatrixPoint


def points(template: JobTemplate) -> List[MatrixPoint]:
    """
    Cartesian product of the template's axes.

    Axes keep their declaration order and so do their values, so the same
    template always yields the same ordered list. No axes -> one empty point.
    """
    axes = list(template.matrix_axes.items())
    for axis, values in axes:
        if not values:
            raise WorkflowError(f"Job '{template.name}' matrix axis '{axis}' has no values")
        if len(set(values)) != len(values):
            raise WorkflowError(f"Job '{template.name}' matrix axis '{axis}' has duplicate values")

    names = [axis for axis, _ in axes]
    combos = product(*[[str(v) for v in values] for _, values in axes])
    return [tuple(zip(names, combo)) for combo in combos]


def expand(template: JobTemplate) -> List[JobInstance]:
    return [JobInstance(template=template, point=p, index=i) for i, p in enumerate(points(template))]


def expand_all(templates: Iterable[JobTemplate]) -> dict[str, List[JobInstance]]:
    return {t.name: expand(t) for t in templates}
