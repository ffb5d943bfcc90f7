# executor.py
from __future__ import annotations

import logging
import time
from typing import List, Optional

from .actions import ActionCatalog
from .environment import Environment, Workspace
from .errors import EnvironmentSetupError, StepFailure
from .model import JobInstance, Step, StepOutcome
from . import settings

logger = logging.getLogger(__name__)


class StepExecutor:
    """
    Runs one step in a prepared workspace.

    Command steps run their literal text; action steps are resolved through
    the catalog into commands. Raises StepFailure on a non-zero exit and
    EnvironmentSetupError when the step cannot be run at all.
    Never retries.
    """

    def __init__(
        self,
        environment: Environment,
        catalog: Optional[ActionCatalog] = None,
        output_tail: int = settings.OUTPUT_TAIL,
    ):
        self.environment = environment
        self.catalog = catalog or ActionCatalog.default()
        self.output_tail = output_tail

    def _commands(self, step: Step, workspace: Workspace) -> List[str]:
        if step.run is not None:
            return [step.run]
        action = self.catalog.resolve(step.uses)
        action.check_params(step.params)
        return action.handler(dict(step.params), workspace, self.environment)

    def execute(self, step: Step, instance: JobInstance, workspace: Workspace) -> StepOutcome:
        start = time.monotonic()
        try:
            commands = self._commands(step, workspace)
        except EnvironmentSetupError as e:
            e.job = e.job or instance.key
            e.step = e.step or step.name
            raise

        output: List[str] = []
        for cmd in commands:
            logger.debug("[%s] %s: %s", instance.key, step.name, cmd)
            try:
                res = self.environment.execute(
                    cmd, workspace, cwd=step.cwd, env=step.env, timeout=step.timeout
                )
            except EnvironmentSetupError as e:
                e.job = e.job or instance.key
                e.step = e.step or step.name
                raise
            output.append(res.output)
            if res.exit_code != 0:
                raise StepFailure(
                    job=instance.key,
                    step=step.name,
                    cmd=cmd,
                    exit_code=res.exit_code,
                    output="".join(output)[-self.output_tail:],
                )

        return StepOutcome(
            step=step.name,
            exit_code=0,
            output="".join(output),
            duration=time.monotonic() - start,
        )
