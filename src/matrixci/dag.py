# dag.py
from __future__ import annotations

import logging
from collections import deque
from typing import Dict, List, Set, Tuple

from .errors import CyclicDependency, ValidationError
from .model import Job, Workflow

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2   # unvisited / in progress / done


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the dependency graph of a list of jobs.

    Returns (adj, indeg) where adj maps a job id to the ids of the jobs that
    need it, and indeg counts each job's distinct dependencies.

    Raises ValidationError on duplicate ids or unknown dependencies.
    """
    if not jobs:
        raise ValidationError("Workflow defines no jobs")

    ids = [j.id for j in jobs]
    if len(set(ids)) != len(ids):
        dupes = sorted({n for n in ids if ids.count(n) > 1})
        raise ValidationError(f"Duplicate job names found: {dupes}")

    id_set = set(ids)
    adj: Dict[str, Set[str]] = {n: set() for n in ids}
    indeg: Dict[str, int] = {n: 0 for n in ids}

    for job in jobs:
        for dep in job.needs:
            if dep not in id_set:
                raise ValidationError(
                    f"Job '{job.id}' needs missing job '{dep}'. "
                    f"Known jobs: {sorted(id_set)}"
                )
            # edge dep -> job (dep must finish before job)
            if job.id not in adj[dep]:
                adj[dep].add(job.id)
                indeg[job.id] += 1

    return adj, indeg


def resolve_order(workflow: Workflow) -> List[str]:
    """
    Topologically order the workflow's jobs: every job comes after all of
    the jobs it needs.

    Depth-first with three-colour marking; a back edge to an in-progress
    job is a cycle and raises CyclicDependency with the cycle spelled out
    (first job repeated at the end).
    """
    build_dag(list(workflow.jobs))
    needs = {j.id: list(j.needs) for j in workflow.jobs}

    color = {j.id: _WHITE for j in workflow.jobs}
    order: List[str] = []
    path: List[str] = []

    def visit(node: str) -> None:
        color[node] = _GREY
        path.append(node)
        for dep in needs[node]:
            if color[dep] == _GREY:
                cycle = path[path.index(dep):] + [dep]
                raise CyclicDependency(cycle)
            if color[dep] == _WHITE:
                visit(dep)
        path.pop()
        color[node] = _BLACK
        order.append(node)

    for j in workflow.jobs:
        if color[j.id] == _WHITE:
            visit(j.id)

    logger.debug("resolved job order: %s", order)
    return order


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (stages).
    Jobs inside one stage have no dependency on each other.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1
            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ValidationError(f"DAG has a cycle. Stuck jobs: {remaining}")

    return levels


def stages(workflow: Workflow) -> List[List[str]]:
    """Validated stage plan for display (`matrixci plan`)."""
    resolve_order(workflow)
    adj, indeg = build_dag(list(workflow.jobs))
    return topo_levels(adj, indeg)

