# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Status(str, Enum):
    """Lifecycle of a job instance (and of a run)."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.SUCCEEDED, Status.FAILED, Status.CANCELLED)

    def can_become(self, other: "Status") -> bool:
        if self is Status.PENDING:
            # a pending instance may be cancelled without ever running
            return other in (Status.RUNNING, Status.CANCELLED)
        if self is Status.RUNNING:
            return other.is_terminal
        return False


# ----------------------------------------------------------------------
# Definition model (shared read-only across runs)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """
    A single step inside a job: either a shell command (`run`) or a
    reference to a catalogued action (`uses` + `params`).
    """
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    params: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None   # seconds
    retries: int = 0

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise ValueError(f"step {self.name!r} needs exactly one of 'run' or 'uses'")

    @property
    def kind(self) -> str:
        return "command" if self.run is not None else "action"


@dataclass(frozen=True)
class Job:
    """
    A CI job: ordered steps, an optional matrix and the ids of the jobs
    that must finish before it.

    `matrix` maps axis name -> ordered values; dict order is axis order.
    """
    id: str
    steps: Tuple[Step, ...]
    name: Optional[str] = None
    needs: Tuple[str, ...] = ()
    matrix: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    runs_on: Optional[str] = None
    fail_fast: bool = False   # cancel matrix siblings after the first failure
    max_parallel: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Workflow:
    """Named collection of jobs plus the events that trigger it."""
    name: str
    triggers: frozenset
    jobs: Tuple[Job, ...]

    def job(self, job_id: str) -> Job:
        for j in self.jobs:
            if j.id == job_id:
                return j
        raise KeyError(job_id)

    def triggered_by(self, event: str) -> bool:
        return event in self.triggers


@dataclass(frozen=True)
class JobInstance:
    """A job bound to one concrete combination of matrix values."""
    job: Job
    values: Tuple[Tuple[str, str], ...]
    name: str
    steps: Tuple[Step, ...]
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        if not self.values:
            return self.job.id
        return f"{self.job.id} ({', '.join(v for _, v in self.values)})"

    @property
    def matrix(self) -> Dict[str, str]:
        return dict(self.values)


# ----------------------------------------------------------------------
# Results (owned by a single run)
# ----------------------------------------------------------------------

@dataclass
class StepOutcome:
    step: str
    exit_code: int
    output: str
    duration: float
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class InstanceResult:
    key: str
    name: str
    status: Status = Status.PENDING
    steps: List[StepOutcome] = field(default_factory=list)
    failed_step: Optional[str] = None
    exit_code: Optional[int] = None
    error: Optional[str] = None
    output_tail: str = ""

    def transition(self, status: Status) -> None:
        if not self.status.can_become(status):
            raise RuntimeError(f"{self.key}: illegal transition {self.status.value} -> {status.value}")
        self.status = status


@dataclass
class RunResult:
    workflow: str
    event: str
    status: Status = Status.PENDING
    instances: Dict[str, InstanceResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status is Status.SUCCEEDED

    def by_status(self, status: Status) -> List[InstanceResult]:
        return [r for r in self.instances.values() if r.status is status]
