"""
Pydantic models for the raw workflow document.

These only describe the shape of the input (a GitHub-Actions-like YAML
file). `loader.py` turns a validated document into the immutable
`model.Workflow` the engine runs.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Scalar = Union[bool, int, float, str]


def scalar_to_str(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class _Doc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class StepDoc(_Doc):
    name: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Scalar] = Field(default_factory=dict, alias="with")
    env: Dict[str, Scalar] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)
    retries: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _run_xor_uses(self) -> "StepDoc":
        if (self.run is None) == (self.uses is None):
            raise ValueError("a step needs exactly one of 'run' or 'uses'")
        if self.run is not None and self.with_:
            raise ValueError("'with' is only valid together with 'uses'")
        if self.uses is not None and "@" not in self.uses:
            raise ValueError(f"action reference must be versioned (name@version): {self.uses!r}")
        return self

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return self.uses
        return self.run.strip().splitlines()[0] if self.run.strip() else "run"


class StrategyDoc(_Doc):
    matrix: Dict[str, List[Scalar]] = Field(default_factory=dict)
    fail_fast: bool = Field(default=False, alias="fail-fast")
    max_parallel: Optional[int] = Field(default=None, alias="max-parallel", ge=1)


class JobDoc(_Doc):
    name: Optional[str] = None
    runs_on: Optional[str] = Field(default=None, alias="runs-on")
    needs: Union[str, List[str]] = Field(default_factory=list)
    strategy: Optional[StrategyDoc] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)
    steps: List[StepDoc] = Field(min_length=1)

    @field_validator("needs")
    @classmethod
    def _needs_list(cls, v: Union[str, List[str]]) -> List[str]:
        return [v] if isinstance(v, str) else v


class WorkflowDoc(_Doc):
    name: Optional[str] = None
    on: Union[str, List[str], Dict[str, Any]]
    env: Dict[str, Scalar] = Field(default_factory=dict)
    jobs: Dict[str, JobDoc] = Field(min_length=1)

    @property
    def events(self) -> List[str]:
        if isinstance(self.on, str):
            return [self.on]
        return list(self.on)
