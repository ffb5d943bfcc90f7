"""End-to-end scheduling tests with a scripted environment."""

import threading
import time

import pytest
from conftest import FakeEnvironment, RecordingReporter

from matrixci.dsl import job, sh, wf
from matrixci.errors import CyclicDependency, InvalidMatrix, NotTriggered
from matrixci.model import Status
from matrixci.orchestrator import Orchestrator, plan


def _orch(env, concurrency=4, reporter=None):
    return Orchestrator(env, concurrency=concurrency, reporter=reporter, poll_interval=0.01)


def test_two_independent_jobs_succeed(fake_env):
    w = wf("ci", job("check", sh("Check", "check")), job("fmt", sh("Fmt", "fmt")))
    run = _orch(fake_env).run(w, "push")
    assert run.status is Status.SUCCEEDED
    assert {k: r.status for k, r in run.instances.items()} == {
        "check": Status.SUCCEEDED,
        "fmt": Status.SUCCEEDED,
    }


def test_matrix_failure_does_not_affect_sibling():
    env = FakeEnvironment(fail={"cargo +1.43.0 test": 101})
    w = wf("ci", job("test", sh("Test", "cargo +${{ matrix.toolchain }} test"), matrix={"toolchain": ["stable", "1.43.0"]}))
    run = _orch(env).run(w, "push")

    assert list(run.instances) == ["test (stable)", "test (1.43.0)"]
    assert run.instances["test (stable)"].status is Status.SUCCEEDED
    failed = run.instances["test (1.43.0)"]
    assert failed.status is Status.FAILED
    assert failed.failed_step == "Test"
    assert failed.exit_code == 101
    assert run.status is Status.FAILED


def test_failed_dependency_cancels_dependents_transitively():
    env = FakeEnvironment(fail={"a": 1})
    w = wf(
        "ci",
        job("a", sh("a", "a")),
        job("b", sh("b", "b"), needs=["a"]),
        job("c", sh("c", "c"), needs=["b"], matrix={"x": ["1", "2"]}),
        job("other", sh("other", "other")),
    )
    run = _orch(env).run(w, "push")

    assert run.instances["a"].status is Status.FAILED
    assert run.instances["b"].status is Status.CANCELLED
    assert run.instances["c (1)"].status is Status.CANCELLED
    assert run.instances["c (2)"].status is Status.CANCELLED
    assert run.instances["other"].status is Status.SUCCEEDED
    assert "dependency 'a'" in run.instances["b"].error
    assert {c for _, c in env.calls} == {"a", "other"}
    assert run.status is Status.FAILED


def test_one_failed_matrix_instance_blocks_dependents():
    env = FakeEnvironment(fail={"build 2": 1})
    w = wf(
        "ci",
        job("build", sh("b", "build ${{ matrix.n }}"), matrix={"n": ["1", "2"]}),
        job("deploy", sh("d", "deploy"), needs=["build"]),
    )
    run = _orch(env).run(w, "push")
    assert run.instances["build (1)"].status is Status.SUCCEEDED
    assert run.instances["deploy"].status is Status.CANCELLED
    assert env.commands_for("deploy") == []


def test_dependencies_run_first(fake_env):
    w = wf(
        "ci",
        job("deploy", sh("d", "deploy"), needs=["test", "lint"]),
        job("test", sh("t", "test ${{ matrix.n }}"), matrix={"n": ["1", "2", "3"]}),
        job("lint", sh("l", "lint")),
    )
    run = _orch(fake_env, concurrency=8).run(w, "push")
    assert run.status is Status.SUCCEEDED
    commands = [c for _, c in fake_env.calls]
    assert commands[-1] == "deploy"
    assert set(commands[:-1]) == {"test 1", "test 2", "test 3", "lint"}


def test_concurrency_limit_respected():
    env = FakeEnvironment()
    w = wf("ci", *(job(f"j{i}", sh("s", "sleep 0.05")) for i in range(6)))
    run = _orch(env, concurrency=2).run(w, "push")
    assert run.status is Status.SUCCEEDED
    assert 1 <= env.max_active <= 2


def test_concurrency_one_is_sequential():
    env = FakeEnvironment()
    w = wf("ci", job("t", sh("s", "sleep 0.01"), matrix={"n": ["1", "2", "3", "4"]}))
    _orch(env, concurrency=1).run(w, "push")
    assert env.max_active == 1


def test_max_parallel_per_job():
    env = FakeEnvironment()
    w = wf("ci", job("t", sh("s", "sleep 0.02"), matrix={"n": ["1", "2", "3", "4"]}, max_parallel=1))
    run = _orch(env, concurrency=4).run(w, "push")
    assert run.status is Status.SUCCEEDED
    assert env.max_active == 1


def test_sibling_fail_fast():
    env = FakeEnvironment(fail={"run 1": 1})
    w = wf("ci", job("t", sh("s", "run ${{ matrix.n }}"), matrix={"n": ["1", "2", "3"]}, fail_fast=True))
    run = _orch(env, concurrency=1).run(w, "push")
    assert run.instances["t (1)"].status is Status.FAILED
    assert run.instances["t (2)"].status is Status.CANCELLED
    assert run.instances["t (3)"].status is Status.CANCELLED
    assert [c for _, c in env.calls] == ["run 1"]


def test_siblings_independent_by_default():
    env = FakeEnvironment(fail={"run 1": 1})
    w = wf("ci", job("t", sh("s", "run ${{ matrix.n }}"), matrix={"n": ["1", "2", "3"]}))
    run = _orch(env, concurrency=1).run(w, "push")
    assert [r.status for r in run.instances.values()] == [Status.FAILED, Status.SUCCEEDED, Status.SUCCEEDED]


def test_cancel_while_running():
    env = FakeEnvironment()
    w = wf("ci", job("x", sh("x", "gate x"), sh("x2", "after")), job("y", sh("y", "y")))
    orch = _orch(env, concurrency=1)
    out = {}

    t = threading.Thread(target=lambda: out.update(run=orch.run(w, "push")))
    t.start()
    assert env.wait_started("x")
    orch.cancel()
    env.open_gate("x")
    t.join(5)

    run = out["run"]
    assert run.instances["x"].status is Status.CANCELLED
    assert run.instances["y"].status is Status.CANCELLED
    assert env.commands_for("y") == []
    assert env.commands_for("x") == ["gate x"]
    assert run.status is Status.CANCELLED


def test_cancel_before_run(fake_env):
    orch = _orch(fake_env)
    orch.cancel()
    run = orch.run(wf("ci", job("a", sh("a", "a"))), "push")
    assert run.instances["a"].status is Status.CANCELLED
    assert fake_env.calls == []
    assert run.status is Status.CANCELLED


def test_cancellation_does_not_carry_over_to_next_run(fake_env):
    orch = _orch(fake_env)
    w = wf("ci", job("a", sh("a", "a")))
    orch.cancel()
    first = orch.run(w, "push")
    assert first.status is Status.CANCELLED
    assert fake_env.calls == []

    second = orch.run(w, "push")
    assert second.status is Status.SUCCEEDED
    assert fake_env.commands_for("a") == ["a"]


def test_terminal_instances_unaffected_by_cancel():
    env = FakeEnvironment()
    w = wf("ci", job("fast", sh("f", "fast")), job("slow", sh("s", "gate slow")))
    orch = _orch(env, concurrency=2)
    out = {}

    t = threading.Thread(target=lambda: out.update(run=orch.run(w, "push")))
    t.start()
    assert env.wait_started("slow")
    # wait until "fast" has been executed before cancelling
    for _ in range(500):
        if env.commands_for("fast"):
            break
        time.sleep(0.01)
    time.sleep(0.1)
    orch.cancel()
    env.open_gate("slow")
    t.join(5)

    run = out["run"]
    assert run.instances["fast"].status is Status.SUCCEEDED
    assert run.instances["slow"].status is Status.CANCELLED


def test_not_triggered(fake_env):
    w = wf("ci", job("a", sh("a", "a")), on=["pull_request"])
    with pytest.raises(NotTriggered, match="'push'"):
        _orch(fake_env).run(w, "push")
    assert fake_env.calls == []


def test_validation_errors_abort_before_running(fake_env):
    cyclic = wf("ci", job("a", sh("a", "a"), needs=["b"]), job("b", sh("b", "b"), needs=["a"]), job("c", sh("c", "c")))
    with pytest.raises(CyclicDependency):
        _orch(fake_env).run(cyclic, "push")

    bad_matrix = wf("ci", job("ok", sh("ok", "ok")), job("t", sh("t", "t"), matrix={"n": []}))
    with pytest.raises(InvalidMatrix):
        _orch(fake_env).run(bad_matrix, "push")
    assert fake_env.calls == []


def test_status_transitions_reported(fake_env):
    reporter = RecordingReporter()
    w = wf("ci", job("a", sh("a", "a")), job("b", sh("b", "b"), needs=["a"]))
    run = _orch(fake_env, reporter=reporter).run(w, "push")
    assert reporter.events[0] == ("run_started", "ci")
    assert reporter.events[-1] == ("run_finished", "succeeded")
    assert reporter.kinds("instance_finished") == ["a:succeeded", "b:succeeded"]
    assert run.by_status(Status.SUCCEEDED) == list(run.instances.values())


def test_invalid_concurrency(fake_env):
    with pytest.raises(ValueError):
        Orchestrator(fake_env, concurrency=0)


def test_plan():
    w = wf(
        "ci",
        job("test", sh("t", "t"), name="Test", matrix={"rust": ["stable", "1.43.0"]}),
        job("deploy", sh("d", "d"), needs=["test"]),
    )
    assert plan(w) == [
        {"test": ["Test (stable)", "Test (1.43.0)"]},
        {"deploy": ["deploy"]},
    ]
