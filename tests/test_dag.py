"""Tests for dependency resolution."""

import itertools

import pytest

from matrixci.dag import build_dag, resolve_order, stages, topo_levels
from matrixci.dsl import job, sh, wf
from matrixci.errors import CyclicDependency, ValidationError


def _wf(*specs):
    """_wf(("a", []), ("b", ["a"]))"""
    return wf("w", *(job(name, sh("s", "true"), needs=needs) for name, needs in specs))


def _assert_respects_deps(workflow, order):
    pos = {name: i for i, name in enumerate(order)}
    assert sorted(order) == sorted(j.id for j in workflow.jobs)
    for j in workflow.jobs:
        for dep in j.needs:
            assert pos[dep] < pos[j.id]


def test_independent_jobs():
    w = _wf(("check", []), ("fmt", []), ("clippy", []))
    order = resolve_order(w)
    assert sorted(order) == ["check", "clippy", "fmt"]
    assert stages(w) == [["check", "clippy", "fmt"]]


def test_chain_and_diamond():
    w = _wf(("d", ["b", "c"]), ("b", ["a"]), ("c", ["a"]), ("a", []))
    order = resolve_order(w)
    _assert_respects_deps(w, order)
    assert stages(w) == [["a"], ["b", "c"], ["d"]]


def test_every_declaration_order_is_accepted():
    specs = [("a", []), ("b", ["a"]), ("c", ["b"]), ("d", ["a", "c"])]
    for perm in itertools.permutations(specs):
        w = _wf(*perm)
        _assert_respects_deps(w, resolve_order(w))


def test_cycle_is_named():
    w = _wf(("a", ["c"]), ("b", ["a"]), ("c", ["b"]), ("free", []))
    with pytest.raises(CyclicDependency) as exc:
        resolve_order(w)
    cycle = exc.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}
    assert "->" in str(exc.value)


def test_self_dependency_is_a_cycle():
    with pytest.raises(CyclicDependency, match="a -> a"):
        resolve_order(_wf(("a", ["a"])))


def test_unknown_dependency():
    with pytest.raises(ValidationError, match="missing job 'nope'"):
        resolve_order(_wf(("a", ["nope"])))


def test_duplicate_job_names():
    with pytest.raises(ValidationError, match="Duplicate"):
        resolve_order(_wf(("a", []), ("a", [])))


def test_empty_workflow():
    with pytest.raises(ValidationError, match="no jobs"):
        build_dag([])


def test_topo_levels_detects_stuck_jobs():
    adj = {"a": {"b"}, "b": {"a"}}
    indeg = {"a": 1, "b": 1}
    with pytest.raises(ValidationError, match="cycle"):
        topo_levels(adj, indeg)


def test_adjacency_maps_job_to_its_dependents():
    w = _wf(("a", []), ("b", ["a"]), ("c", ["a"]))
    adj, indeg = build_dag(list(w.jobs))
    assert indeg == {"a": 0, "b": 1, "c": 1}
    assert adj == {"a": {"b", "c"}, "b": set(), "c": set()}
