# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class CIError(Exception):
    """Base class for every error raised by matrixci."""


# ----------------------------------------------------------------------
# Definition-time errors (fatal, the run never starts)
# ----------------------------------------------------------------------

class ValidationError(CIError):
    """Malformed workflow definition."""


class InvalidMatrix(ValidationError):
    def __init__(self, job: str, axis: str, reason: str = "has no values"):
        self.job = job
        self.axis = axis
        super().__init__(f"Job '{job}': matrix axis '{axis}' {reason}")


class CyclicDependency(ValidationError):
    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__("Cyclic job dependency: " + " -> ".join(self.cycle))


class NotTriggered(ValidationError):
    def __init__(self, workflow: str, event: str, triggers):
        self.event = event
        super().__init__(
            f"Workflow '{workflow}' is not triggered by '{event}' "
            f"(triggers: {', '.join(sorted(triggers)) or 'none'})"
        )


# ----------------------------------------------------------------------
# Instance-local errors (recorded as status, never cross instances)
# ----------------------------------------------------------------------

@dataclass
class StepFailure(CIError):
    job: str
    step: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class EnvironmentSetupError(CIError):
    """The environment could not be prepared for a step (missing tool, unknown action...)."""
    message: str
    job: str = ""
    step: Optional[str] = None
    hint: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [self.message]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        if self.hint:
            lines.append(f"hint={self.hint}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)
