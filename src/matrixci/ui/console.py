"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import Dict, List, Optional

from ..model import InstanceResult, RunResult, Status


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where to write (defaults to sys.stdout at call time)
        """
        self.debug = debug
        self._stream = stream
        self._lock = threading.Lock()

    def _print(self, *lines: str, err: bool = False) -> None:
        out = sys.stderr if err else (self._stream or sys.stdout)
        # instances report from worker threads; keep their lines together
        with self._lock:
            for line in lines:
                print(line, file=out)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._print(f"\n{title}", "-" * len(title))

    def print_run_started(self, workflow: str, event: str, instance_count: int) -> None:
        """Print run start information."""
        self._print("\nRUN STARTED", f"Workflow: {workflow}", f"Event: {event}", f"Instances: {instance_count}", "")

    def print_instance_start(self, name: str) -> None:
        self._print(f"JOB STARTED: {name}")

    def print_step(self, instance: str, name: str) -> None:
        self._print(f"[{instance}] STEP: {name}")

    def print_step_done(self, instance: str, name: str, exit_code: int, duration: float) -> None:
        state = "ok" if exit_code == 0 else f"exit {exit_code}"
        self._print(f"[{instance}] STEP DONE: {name} ({state}, {duration:.1f}s)")

    def print_instance_done(self, result: InstanceResult) -> None:
        lines = [f"JOB {result.status.value.upper()}: {result.name}"]
        if result.status is Status.FAILED:
            lines.extend(self._failure_lines(result))
        elif result.error:
            lines.append(f"  Reason: {result.error}")
        self._print(*lines)

    def _failure_lines(self, result: InstanceResult) -> List[str]:
        lines = []
        if result.failed_step:
            lines.append(f"  Step: {result.failed_step}")
        if result.exit_code is not None:
            lines.append(f"  Exit code: {result.exit_code}")
        if result.error:
            first = result.error if self.debug else result.error.split("\n")[0]
            lines.append(f"  Error: {first}")
        if result.output_tail:
            lines.append("  Output (tail):")
            tail = result.output_tail.rstrip("\n").splitlines()
            lines.extend(f"    {l}" for l in (tail if self.debug else tail[-20:]))
        return lines

    def print_plan(self, stage_instances: List[Dict[str, List[str]]]) -> None:
        """Print the stage plan: one block per stage, instances under each job."""
        for idx, stage in enumerate(stage_instances, start=1):
            self._print(f"=== Stage {idx} ===")
            for job_id, names in stage.items():
                self._print(f"  {job_id}")
                self._print(*(f"    - {n}" for n in names))

    def print_results(self, run: RunResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for res in run.instances.values():
            lines.append(f"  {res.name}: {res.status.value.upper()}")
        for res in run.by_status(Status.FAILED):
            lines.append("")
            lines.append(f"FAILED: {res.name}")
            lines.extend(self._failure_lines(res))
        lines.append("")
        lines.append(f"RUN {run.status.value.upper()}")
        self._print(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Print structured error message."""
        lines = [f"\nERROR: {title}", message]
        lines.extend(f"  {d}" for d in details or [])
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._print(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
