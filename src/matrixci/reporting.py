# reporting.py
from __future__ import annotations

from typing import Optional

from .model import InstanceResult, JobInstance, RunResult, Step, StepOutcome
from .ui.console import Console, get_console


class Reporter:
    """
    Receives status transitions from the engine. Every hook is a no-op
    here; subclasses override what they care about. Instance and step hooks
    are called from worker threads.
    """

    def run_started(self, run: RunResult) -> None:
        pass

    def instance_started(self, instance: JobInstance) -> None:
        pass

    def step_started(self, instance: JobInstance, step: Step) -> None:
        pass

    def step_finished(self, instance: JobInstance, outcome: StepOutcome) -> None:
        pass

    def instance_finished(self, result: InstanceResult) -> None:
        pass

    def run_finished(self, run: RunResult) -> None:
        pass


class ConsoleReporter(Reporter):
    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()

    def run_started(self, run: RunResult) -> None:
        self.console.print_run_started(run.workflow, run.event, len(run.instances))

    def instance_started(self, instance: JobInstance) -> None:
        self.console.print_instance_start(instance.name)

    def step_started(self, instance: JobInstance, step: Step) -> None:
        self.console.print_step(instance.name, step.name)

    def step_finished(self, instance: JobInstance, outcome: StepOutcome) -> None:
        self.console.print_step_done(instance.name, outcome.step, outcome.exit_code, outcome.duration)

    def instance_finished(self, result: InstanceResult) -> None:
        self.console.print_instance_done(result)

    def run_finished(self, run: RunResult) -> None:
        self.console.print_results(run)
