# loader.py
from __future__ import annotations

import logging
import runpy
from collections.abc import Hashable
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError as SchemaError

from .dag import resolve_order
from .errors import ValidationError
from .matrix import expand_workflow
from .model import Job, Step, Workflow
from .schema import JobDoc, StepDoc, WorkflowDoc, scalar_to_str

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yml", ".yaml")
_MERGE_TAG = "tag:yaml.org,2002:merge"


class DuplicateKeyError(yaml.constructor.ConstructorError):
    def __init__(self, keys, node, is_jobs: bool):
        super().__init__(
            "while constructing a mapping", node.start_mark,
            f"found duplicate keys {keys}", node.start_mark,
        )
        self.keys = keys
        self.is_jobs = is_jobs


class StrictLoader(yaml.SafeLoader):
    """SafeLoader that rejects repeated mapping keys instead of keeping the last one."""

    def construct_document(self, node):
        self._root = node
        return super().construct_document(node)

    def _is_jobs_node(self, node) -> bool:
        root = getattr(self, "_root", None)
        if not isinstance(root, yaml.MappingNode):
            return False
        return any(k.value == "jobs" and v is node for k, v in root.value)

    def construct_mapping(self, node, deep=False):
        seen, dupes = [], []
        if isinstance(node, yaml.MappingNode):
            for key_node, _ in node.value:
                if key_node.tag == _MERGE_TAG:
                    continue
                key = self.construct_object(key_node, deep=True)
                if not isinstance(key, Hashable):
                    continue
                if key in seen and key not in dupes:
                    dupes.append(key)
                seen.append(key)
        if dupes:
            raise DuplicateKeyError(dupes, node, self._is_jobs_node(node))
        return super().construct_mapping(node, deep=deep)


def _strs(mapping: Dict[str, Any]) -> Dict[str, str]:
    return {str(k): scalar_to_str(v) for k, v in mapping.items()}


def _step(doc: StepDoc) -> Step:
    return Step(
        name=doc.display_name,
        run=doc.run,
        uses=doc.uses,
        params=_strs(doc.with_),
        cwd=doc.working_directory,
        env=_strs(doc.env),
        timeout=doc.timeout_minutes * 60 if doc.timeout_minutes else None,
        retries=doc.retries,
    )


def _job(job_id: str, doc: JobDoc, workflow_env: Dict[str, str]) -> Job:
    strategy = doc.strategy
    matrix = {
        axis: tuple(scalar_to_str(v) for v in values)
        for axis, values in (strategy.matrix.items() if strategy else ())
    }
    env = dict(workflow_env)
    env.update(_strs(doc.env))
    return Job(
        id=job_id,
        name=doc.name,
        steps=tuple(_step(s) for s in doc.steps),
        needs=tuple(doc.needs),
        matrix=matrix,
        env=env,
        runs_on=doc.runs_on,
        fail_fast=strategy.fail_fast if strategy else False,
        max_parallel=strategy.max_parallel if strategy else None,
    )


def _schema_message(err: SchemaError) -> str:
    lines = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e["loc"]) or "<root>"
        lines.append(f"  {loc}: {e['msg']}")
    return "Invalid workflow definition:\n" + "\n".join(lines)


def validate_workflow(workflow: Workflow) -> Workflow:
    """Run every definition-time check (deps, cycles, matrices). Returns the workflow."""
    resolve_order(workflow)
    expand_workflow(workflow)
    return workflow


def parse_definition(data: Any, *, name: str = "workflow") -> Workflow:
    """Build a validated Workflow from an already-parsed document."""
    if not data:
        raise ValidationError("Empty workflow definition")
    if not isinstance(data, dict):
        raise ValidationError("Workflow definition must be a mapping")

    data = dict(data)
    # YAML 1.1 reads a bare `on:` key as boolean true
    if True in data and "on" not in data:
        data["on"] = data.pop(True)

    try:
        doc = WorkflowDoc.model_validate(data)
    except SchemaError as e:
        raise ValidationError(_schema_message(e)) from None

    workflow_env = _strs(doc.env)
    workflow = Workflow(
        name=doc.name or name,
        triggers=frozenset(doc.events),
        jobs=tuple(_job(job_id, job_doc, workflow_env) for job_id, job_doc in doc.jobs.items()),
    )
    return validate_workflow(workflow)


def parse_yaml(text: str, *, name: str = "workflow") -> Workflow:
    try:
        data = yaml.load(text, Loader=StrictLoader)
    except DuplicateKeyError as e:
        if e.is_jobs:
            raise ValidationError(f"Duplicate job names found: {sorted(map(str, e.keys))}") from None
        raise ValidationError(f"Invalid YAML: {e}") from None
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML: {e}") from None
    return parse_definition(data, name=name)


def _load_python(path: Path) -> Workflow:
    """
    The file must define either:
      - workflow() -> Workflow
      - WORKFLOW = Workflow(...)
    """
    globals_dict = runpy.run_path(str(path), run_name=f"matrixci_workflow_{path.stem}")

    wf = None
    if callable(globals_dict.get("workflow")):
        wf = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        wf = globals_dict["WORKFLOW"]

    if not isinstance(wf, Workflow):
        raise ValidationError(
            f"{path.name} must define workflow() -> Workflow or WORKFLOW = wf(...)"
        )
    return validate_workflow(wf)


def load_definition(path: str | Path) -> Workflow:
    """Load a workflow from a YAML (.yml/.yaml) or Python (.py) file."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.is_file():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    logger.debug("loading workflow from %s", wf_path)
    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    if wf_path.suffix in YAML_SUFFIXES:
        return parse_yaml(wf_path.read_text(encoding="utf-8"), name=wf_path.stem)
    raise ValidationError(f"Unsupported workflow file type: {wf_path.name} (use .yml, .yaml or .py)")
