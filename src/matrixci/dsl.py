# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .model import Job, Step, Workflow
from .schema import scalar_to_str


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    retries: int = 0,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=dict(env or {}), timeout=timeout, retries=retries)


def uses(
    action: str,
    *,
    name: str | None = None,
    with_: Optional[Dict[str, Any]] = None,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    retries: int = 0,
    **params: Any,
) -> Step:
    """
    Create an action step. Parameters go in as keyword arguments, or in
    `with_` when their names are not valid identifiers or clash with the
    step options (`cwd`, `env`, `timeout`, `retries`, `name`):

        uses("actions-rs/cargo@v1", command="test")
        uses("actions/checkout@v2", with_={"fetch-depth": 0})
    """
    merged = dict(with_ or {})
    merged.update(params)
    return Step(
        name=name or action,
        uses=action,
        params={k: scalar_to_str(v) for k, v in merged.items()},
        cwd=cwd,
        env=dict(env or {}),
        timeout=timeout,
        retries=retries,
    )


# ---------------------------------------------------------------------
# Job helper
# ---------------------------------------------------------------------

def matrix(**axes: Iterable[Any]) -> Dict[str, Tuple[str, ...]]:
    """matrix(rust=["stable", "1.43.0"]) -> ordered axis mapping."""
    return {axis: tuple(scalar_to_str(v) for v in values) for axis, values in axes.items()}


def job(
    id: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    name: Optional[str] = None,
    needs: Optional[Sequence[str]] = None,
    matrix: Optional[Dict[str, Iterable[Any]]] = None,
    env: Optional[Dict[str, str]] = None,
    runs_on: Optional[str] = None,
    fail_fast: bool = False,
    max_parallel: Optional[int] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({id!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        id=id,
        name=name,
        steps=tuple(steps_final),
        needs=tuple([needs] if isinstance(needs, str) else (needs or ())),
        matrix={a: tuple(scalar_to_str(v) for v in vals) for a, vals in (matrix or {}).items()},
        env=dict(env or {}),
        runs_on=runs_on,
        fail_fast=fail_fast,
        max_parallel=max_parallel,
    )


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(name: str, *jobs: Job, on: Sequence[str] = ("push",)) -> Workflow:
    """
    Workflow definition helper.

        from matrixci.dsl import wf, job, sh

        def workflow():
            return wf(
                "ci",
                job("lint", sh("Ruff", "ruff check .")),
                job("test", sh("Pytest", "pytest -q"), needs=["lint"]),
                on=["push", "pull_request"],
            )
    """
    events = [on] if isinstance(on, str) else list(on)
    return Workflow(name=name, triggers=frozenset(events), jobs=tuple(jobs))
