# orchestrator.py
from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Deque, Dict, List, Optional, Set

from .actions import ActionCatalog
from .dag import resolve_order, stages
from .environment import Environment, LocalEnvironment
from .errors import NotTriggered
from .executor import StepExecutor
from .job_runner import JobRunner
from .matrix import expand_job, expand_workflow
from .model import InstanceResult, JobInstance, RunResult, Status, Workflow
from .reporting import Reporter
from . import settings

logger = logging.getLogger(__name__)


class CancelHandle:
    """Thread-safe cancellation switch for a run. Safe to call from signal handlers."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _CancelToken(threading.Event):
    """What a worker polls: set for this instance alone, or by the run-wide handle."""

    def __init__(self, handle: CancelHandle):
        super().__init__()
        self.handle = handle

    def is_set(self) -> bool:
        return super().is_set() or self.handle.cancelled


def plan(workflow: Workflow) -> List[Dict[str, List[str]]]:
    """Stages of job ids, each mapped to its instance names. Nothing is executed."""
    out: List[Dict[str, List[str]]] = []
    for level in stages(workflow):
        out.append({job_id: [i.name for i in expand_job(workflow.job(job_id))] for job_id in level})
    return out


class Orchestrator:
    """
    Schedules every instance of a workflow over at most `concurrency`
    workers.

    All bookkeeping (admission, dependency completion, propagated
    cancellation) happens on the thread that called `run()`; workers only
    execute instances and hand back their result.
    """

    def __init__(
        self,
        environment: Optional[Environment] = None,
        *,
        concurrency: int = settings.CONCURRENCY,
        catalog: Optional[ActionCatalog] = None,
        reporter: Optional[Reporter] = None,
        poll_interval: float = 0.05,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.environment = environment or LocalEnvironment()
        self.concurrency = concurrency
        self.reporter = reporter or Reporter()
        self.runner = JobRunner(StepExecutor(self.environment, catalog), self.reporter)
        self.poll_interval = poll_interval
        self.handle = CancelHandle()

    def cancel(self) -> None:
        """Stop admitting instances and ask running ones to stop.

        Applies to the current run, or to the next one if none is running.
        """
        self.handle.cancel()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, workflow: Workflow, event: str) -> RunResult:
        if not workflow.triggered_by(event):
            raise NotTriggered(workflow.name, event, workflow.triggers)

        # validation-time errors surface here, before anything runs
        order = resolve_order(workflow)
        arena = expand_workflow(workflow)

        run = RunResult(
            workflow=workflow.name,
            event=event,
            instances={k: InstanceResult(key=k, name=i.name) for k, i in arena.items()},
        )
        handle = self.handle
        try:
            _Schedule(self, handle, workflow, order, arena, run).execute()
        finally:
            # each run owns its cancellation; the next one starts clean
            self.handle = CancelHandle()
        return run


class _Schedule:
    """State of one run. Only ever touched by the scheduling loop."""

    def __init__(
        self,
        orch: Orchestrator,
        handle: CancelHandle,
        workflow: Workflow,
        order: List[str],
        arena: Dict[str, JobInstance],
        run: RunResult,
    ):
        self.orch = orch
        self.handle = handle
        self.workflow = workflow
        self.order = order
        self.arena = arena
        self.run = run

        self.keys_by_job: Dict[str, List[str]] = {j: [] for j in order}
        for key, inst in arena.items():
            self.keys_by_job[inst.job.id].append(key)

        self.unreleased: List[str] = list(order)       # jobs whose deps are not all terminal yet
        self.open: Dict[str, int] = {j: len(k) for j, k in self.keys_by_job.items()}
        self.done: Set[str] = set()                      # jobs with every instance terminal
        self.ready: Deque[str] = deque()
        self.in_flight: Dict[Future, str] = {}
        self.cancel_events: Dict[str, _CancelToken] = {k: _CancelToken(handle) for k in arena}
        self.cancel_applied = False

    # -------------------- bookkeeping --------------------

    def _job_ok(self, job_id: str) -> bool:
        return all(self.run.instances[k].status is Status.SUCCEEDED for k in self.keys_by_job[job_id])

    def _terminal(self, key: str) -> None:
        job_id = self.arena[key].job.id
        self.open[job_id] -= 1
        if self.open[job_id] == 0:
            self.done.add(job_id)
            logger.debug("job %s finished (ok=%s)", job_id, self._job_ok(job_id))

    def _skip(self, key: str, reason: str) -> None:
        res = self.run.instances[key]
        res.error = reason
        res.transition(Status.CANCELLED)
        self.orch.reporter.instance_finished(res)
        self._terminal(key)

    def _release(self) -> None:
        """Move jobs whose dependencies are all terminal to ready, or skip them."""
        changed = True
        while changed:
            changed = False
            for job_id in list(self.unreleased):
                job = self.workflow.job(job_id)
                if not all(d in self.done for d in job.needs):
                    continue
                self.unreleased.remove(job_id)
                changed = True
                bad = [d for d in job.needs if not self._job_ok(d)]
                if bad:
                    for key in self.keys_by_job[job_id]:
                        self._skip(key, f"dependency '{bad[0]}' did not succeed")
                else:
                    self.ready.extend(self.keys_by_job[job_id])

    def _apply_cancel(self) -> None:
        self.cancel_applied = True
        logger.info("cancellation requested; %d running, %d queued", len(self.in_flight), len(self.ready))
        while self.ready:
            self._skip(self.ready.popleft(), "run cancelled")
        for job_id in list(self.unreleased):
            self.unreleased.remove(job_id)
            for key in self.keys_by_job[job_id]:
                self._skip(key, "run cancelled")
        for key in self.in_flight.values():
            self.cancel_events[key].set()

    def _cancel_siblings(self, key: str) -> None:
        job_id = self.arena[key].job.id
        for sib in self.keys_by_job[job_id]:
            if sib in self.ready:
                self.ready.remove(sib)
                self._skip(sib, f"sibling '{key}' failed")
            elif sib in self.in_flight.values():
                self.cancel_events[sib].set()

    def _running(self, job_id: str) -> int:
        return sum(1 for k in self.in_flight.values() if self.arena[k].job.id == job_id)

    def _next_admissible(self) -> Optional[str]:
        for key in self.ready:
            job = self.arena[key].job
            if job.max_parallel is None or self._running(job.id) < job.max_parallel:
                return key
        return None

    def _admit(self, pool: ThreadPoolExecutor) -> None:
        while self.ready and len(self.in_flight) < self.orch.concurrency:
            key = self._next_admissible()
            if key is None:
                break
            self.ready.remove(key)
            self.run.instances[key].transition(Status.RUNNING)
            if self.run.status is Status.PENDING:
                self.run.status = Status.RUNNING
            fut = pool.submit(self.orch.runner.run, self.arena[key], self.run.instances[key], self.cancel_events[key])
            self.in_flight[fut] = key

    def _collect(self, fut: Future) -> None:
        key = self.in_flight.pop(fut)
        res = self.run.instances[key]
        exc = fut.exception()
        if exc is not None and not res.status.is_terminal:
            res.error = f"{type(exc).__name__}: {exc}"
            res.transition(Status.FAILED)
        logger.debug("instance %s -> %s", key, res.status.value)
        self._terminal(key)
        if res.status is Status.FAILED and self.arena[key].job.fail_fast:
            self._cancel_siblings(key)

    # -------------------- main loop --------------------

    def execute(self) -> None:
        orch = self.orch
        orch.reporter.run_started(self.run)

        with ThreadPoolExecutor(max_workers=orch.concurrency, thread_name_prefix="matrixci") as pool:
            while True:
                if self.handle.cancelled and not self.cancel_applied:
                    self._apply_cancel()
                self._release()
                if not self.handle.cancelled:
                    self._admit(pool)
                if not self.in_flight:
                    break
                finished, _ = wait(list(self.in_flight), timeout=orch.poll_interval, return_when=FIRST_COMPLETED)
                for fut in finished:
                    self._collect(fut)

        self.run.status = self._final_status()
        orch.reporter.run_finished(self.run)

    def _final_status(self) -> Status:
        statuses = [r.status for r in self.run.instances.values()]
        if all(s is Status.SUCCEEDED for s in statuses):
            return Status.SUCCEEDED
        if self.handle.cancelled:
            return Status.CANCELLED
        return Status.FAILED
