"""Shared fixtures: a scripted environment and a recording reporter."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from matrixci.environment import CommandResult, Environment, Workspace
from matrixci.errors import EnvironmentSetupError
from matrixci.reporting import Reporter


class FakeEnvironment(Environment):
    """
    Interprets commands instead of running them:

      - commands listed in `fail` exit with the given code
      - commands listed in `flaky` fail that many times, then succeed
      - "sleep <s>" sleeps
      - "gate <name>" marks `started[name]` and blocks until `open_gate(name)`
      - anything else succeeds and echoes itself
    """

    def __init__(self, fail=None, flaky=None, tools=("rustup", "cargo"), unprepared=()):
        self.fail: Dict[str, int] = dict(fail or {})
        self.flaky: Dict[str, int] = dict(flaky or {})
        self.tools = set(tools)
        self.unprepared = set(unprepared)
        self.calls: List[Tuple[str, str]] = []
        self.workspaces: Dict[str, Workspace] = {}
        self.started: Dict[str, threading.Event] = {}
        self.gates: Dict[str, threading.Event] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _event(self, table, name):
        with self._lock:
            return table.setdefault(name, threading.Event())

    def open_gate(self, name: str) -> None:
        self._event(self.gates, name).set()

    def wait_started(self, name: str, timeout: float = 5) -> bool:
        return self._event(self.started, name).wait(timeout)

    def commands_for(self, key: str) -> List[str]:
        return [cmd for k, cmd in self.calls if k == key]

    # -------------------- Environment --------------------

    def prepare(self, instance):
        if instance.key in self.unprepared:
            raise EnvironmentSetupError(f"cannot prepare {instance.key}")
        ws = Workspace(workdir=Path("."), env=dict(instance.env))
        ws.env["INSTANCE"] = instance.key
        self.workspaces[instance.key] = ws
        return ws

    def require_tool(self, tool: str) -> None:
        if tool not in self.tools:
            raise EnvironmentSetupError(f"Required tool '{tool}' is not available")

    def execute(self, command, workspace, *, cwd=None, env=None, timeout=None):
        key = workspace.env["INSTANCE"]
        with self._lock:
            self.calls.append((key, command))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            return self._interpret(command)
        finally:
            with self._lock:
                self.active -= 1

    def _interpret(self, command: str) -> CommandResult:
        if command.startswith("sleep "):
            time.sleep(float(command.split()[1]))
        elif command.startswith("gate "):
            name = command.split()[1]
            self._event(self.started, name).set()
            self._event(self.gates, name).wait(5)

        with self._lock:
            if self.flaky.get(command, 0) > 0:
                self.flaky[command] -= 1
                return CommandResult(exit_code=1, output=f"flaky {command}\n", duration=0.0)
        if command in self.fail:
            return CommandResult(exit_code=self.fail[command], output=f"boom: {command}\n", duration=0.0)
        return CommandResult(exit_code=0, output=f"ran {command}\n", duration=0.0)


class RecordingReporter(Reporter):
    def __init__(self):
        self.events: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def _add(self, kind: str, what: str) -> None:
        with self._lock:
            self.events.append((kind, what))

    def run_started(self, run):
        self._add("run_started", run.workflow)

    def instance_started(self, instance):
        self._add("instance_started", instance.key)

    def step_started(self, instance, step):
        self._add("step_started", f"{instance.key}:{step.name}")

    def instance_finished(self, result):
        self._add("instance_finished", f"{result.key}:{result.status.value}")

    def run_finished(self, run):
        self._add("run_finished", run.status.value)

    def kinds(self, kind: str) -> List[str]:
        return [what for k, what in self.events if k == kind]


@pytest.fixture
def fake_env() -> FakeEnvironment:
    return FakeEnvironment()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()
