# matrix.py
from __future__ import annotations

import itertools
import re
from dataclasses import replace
from typing import Dict, List, Tuple

from .errors import InvalidMatrix, ValidationError
from .model import Job, JobInstance, Step, Workflow

# ${{ matrix.rust }}; other namespaces (github.*, env.*) are left untouched
_MATRIX_EXPR = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_-]+)\s*\}\}")


def interpolate(text: str | None, job: Job, values: Dict[str, str]) -> str | None:
    """Substitute `${{ matrix.<axis> }}` placeholders with this instance's values."""
    if text is None:
        return None

    def _sub(m: re.Match) -> str:
        axis = m.group(1)
        if axis not in values:
            raise ValidationError(
                f"Job '{job.id}' references matrix.{axis}, "
                f"but its matrix only has: {sorted(values) or 'no axes'}"
            )
        return values[axis]

    return _MATRIX_EXPR.sub(_sub, text)


def _render_step(step: Step, job: Job, values: Dict[str, str]) -> Step:
    return replace(
        step,
        name=interpolate(step.name, job, values),
        run=interpolate(step.run, job, values),
        params={k: interpolate(v, job, values) for k, v in step.params.items()},
        env={k: interpolate(v, job, values) for k, v in step.env.items()},
    )


def _check_axes(job: Job) -> List[Tuple[str, Tuple[str, ...]]]:
    axes = list(job.matrix.items())
    for axis, axis_values in axes:
        if not axis_values:
            raise InvalidMatrix(job.id, axis)
        if len(set(axis_values)) != len(axis_values):
            dupes = sorted({v for v in axis_values if axis_values.count(v) > 1})
            raise InvalidMatrix(job.id, axis, f"has duplicate values {dupes}")
    return axes


def expand_job(job: Job) -> List[JobInstance]:
    """
    Expand a job into the cartesian product of its matrix axes.

    Instances are ordered like nested loops over the axes in declared
    order (last axis varies fastest). A job without a matrix yields exactly
    one instance.
    """
    axes = _check_axes(job)
    names = [a for a, _ in axes]
    in_name = set(_MATRIX_EXPR.findall(job.display_name))

    instances: List[JobInstance] = []
    for combo in itertools.product(*(vals for _, vals in axes)):
        values = dict(zip(names, combo))
        base = interpolate(job.display_name, job, values)
        # values already spelled out in the name are not repeated
        rest = [v for a, v in zip(names, combo) if a not in in_name]
        suffix = f" ({', '.join(rest)})" if rest else ""
        instances.append(
            JobInstance(
                job=job,
                values=tuple(zip(names, combo)),
                name=base + suffix,
                steps=tuple(_render_step(s, job, values) for s in job.steps),
                env={k: interpolate(v, job, values) for k, v in job.env.items()},
            )
        )
    return instances


def expand_workflow(workflow: Workflow) -> Dict[str, JobInstance]:
    """All instances of a workflow keyed by their stable key, in job order."""
    arena: Dict[str, JobInstance] = {}
    for job in workflow.jobs:
        for inst in expand_job(job):
            arena[inst.key] = inst
    return arena
