from .dsl import job, sh, uses, matrix, wf
from .loader import load_definition, parse_definition, parse_yaml
from .model import Job, JobInstance, RunResult, Status, Step, Workflow
from .orchestrator import CancelHandle, Orchestrator

__all__ = [
    "job", "sh", "uses", "matrix", "wf",
    "load_definition", "parse_definition", "parse_yaml",
    "Job", "JobInstance", "RunResult", "Status", "Step", "Workflow",
    "CancelHandle", "Orchestrator",
]
