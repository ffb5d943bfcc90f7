# job_runner.py
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from .environment import Workspace
from .errors import EnvironmentSetupError, StepFailure
from .executor import StepExecutor
from .model import InstanceResult, JobInstance, Status, Step, StepOutcome
from .reporting import Reporter

logger = logging.getLogger(__name__)


class JobRunner:
    """
    Runs the steps of one job instance, in order, on the calling thread.

    - fail-fast: the first failing step ends the instance as `failed`
    - a step is retried up to `step.retries` extra times before it counts as failed
    - cancellation is observed between steps; an instance that saw a
      cancellation request ends `cancelled` whatever its last step did
    """

    def __init__(self, executor: StepExecutor, reporter: Optional[Reporter] = None):
        self.executor = executor
        self.reporter = reporter or Reporter()

    def run(self, instance: JobInstance, result: InstanceResult, cancel: threading.Event) -> InstanceResult:
        try:
            self._run(instance, result, cancel)
        except Exception as e:
            # never let one instance's crash escape into the scheduler
            logger.exception("[%s] unexpected error", instance.key)
            if not result.status.is_terminal:
                self._finish(result, Status.FAILED, error=f"{type(e).__name__}: {e}")
        self.reporter.instance_finished(result)
        return result

    def _run(self, instance: JobInstance, result: InstanceResult, cancel: threading.Event) -> None:
        if cancel.is_set():
            self._finish(result, Status.CANCELLED, error="cancelled before start")
            return

        if result.status is Status.PENDING:
            result.transition(Status.RUNNING)
        self.reporter.instance_started(instance)

        try:
            workspace = self.executor.environment.prepare(instance)
        except EnvironmentSetupError as e:
            e.job = e.job or instance.key
            self._finish(result, Status.FAILED, error=str(e))
            return

        try:
            for step in instance.steps:
                if cancel.is_set():
                    self._finish(result, Status.CANCELLED, error=f"cancelled before step '{step.name}'")
                    return
                if not self._run_step(instance, step, workspace, result, cancel):
                    return
            if cancel.is_set():
                self._finish(result, Status.CANCELLED, error="cancelled while the last step was running")
            else:
                self._finish(result, Status.SUCCEEDED)
        finally:
            self.executor.environment.release(workspace)

    def _run_step(
        self,
        instance: JobInstance,
        step: Step,
        workspace: Workspace,
        result: InstanceResult,
        cancel: threading.Event,
    ) -> bool:
        """Run one step (with retries). Returns False when the instance is over."""
        self.reporter.step_started(instance, step)
        attempts = 0
        start = time.monotonic()

        while True:
            attempts += 1
            try:
                outcome = self.executor.execute(step, instance, workspace)
            except StepFailure as e:
                if attempts <= step.retries and not cancel.is_set():
                    logger.info("[%s] step '%s' failed (exit=%s), retry %d/%d",
                                instance.key, step.name, e.exit_code, attempts, step.retries)
                    continue
                outcome = StepOutcome(step.name, e.exit_code, e.output, time.monotonic() - start, attempts)
                result.steps.append(outcome)
                self.reporter.step_finished(instance, outcome)
                if cancel.is_set():
                    self._finish(result, Status.CANCELLED, error=f"cancelled; step '{step.name}' exited {e.exit_code}")
                else:
                    self._finish(
                        result, Status.FAILED,
                        failed_step=step.name, exit_code=e.exit_code,
                        error=str(e), output_tail=e.output,
                    )
                return False
            except EnvironmentSetupError as e:
                self._finish(result, Status.FAILED, failed_step=step.name, error=str(e))
                return False

            outcome.attempts = attempts
            outcome.duration = time.monotonic() - start
            result.steps.append(outcome)
            self.reporter.step_finished(instance, outcome)
            return True

    @staticmethod
    def _finish(result: InstanceResult, status: Status, **fields) -> None:
        for name, value in fields.items():
            setattr(result, name, value)
        result.transition(status)
