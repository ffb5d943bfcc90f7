# environment.py
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import EnvironmentSetupError
from .model import JobInstance

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124

TOOL_HINTS = {
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "cargo": "Install a Rust toolchain with rustup or fix PATH.",
    "git": "Install Git or fix PATH.",
    "sh": "A POSIX shell is required to run 'run' steps.",
}


@dataclass
class Workspace:
    """
    A prepared environment for one job instance: working directory,
    environment variables and the selected toolchain (if any).
    Owned by a single instance; later steps see changes earlier steps made.
    """
    workdir: Path
    env: Dict[str, str] = field(default_factory=dict)
    toolchain: Optional[str] = None


@dataclass
class CommandResult:
    exit_code: int
    output: str
    duration: float


class Environment(ABC):
    """
    Capability the engine uses to prepare workspaces and run commands.
    The engine never installs toolchains itself; it only goes through this.
    """

    @abstractmethod
    def prepare(self, instance: JobInstance) -> Workspace:
        """Create the workspace for an instance. Raise EnvironmentSetupError if impossible."""

    @abstractmethod
    def execute(
        self,
        command: str,
        workspace: Workspace,
        *,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a shell command inside the workspace."""

    def require_tool(self, tool: str) -> None:
        """Raise EnvironmentSetupError when `tool` is not available."""

    def release(self, workspace: Workspace) -> None:
        """Called once the instance is terminal."""


class LocalEnvironment(Environment):
    """Runs every command through the local shell, in a shared checkout directory."""

    def __init__(self, root: str | Path = ".", base_env: Optional[Dict[str, str]] = None):
        self.root = Path(root).expanduser().resolve()
        self.base_env = dict(os.environ if base_env is None else base_env)

    def prepare(self, instance: JobInstance) -> Workspace:
        if not self.root.is_dir():
            raise EnvironmentSetupError(
                f"Working directory not found: {self.root}",
                job=instance.key,
            )
        env = dict(self.base_env)
        env.update(instance.env)
        for axis, value in instance.values:
            env[f"MATRIX_{axis.upper().replace('-', '_')}"] = value
        return Workspace(workdir=self.root, env=env)

    def require_tool(self, tool: str) -> None:
        if shutil.which(tool, path=self.base_env.get("PATH")) is None:
            raise EnvironmentSetupError(
                f"Required tool '{tool}' is not available",
                hint=TOOL_HINTS.get(tool, f"Install {tool} or fix PATH."),
            )

    def execute(
        self,
        command: str,
        workspace: Workspace,
        *,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        run_cwd = (workspace.workdir / (cwd or ".")).resolve()
        if not run_cwd.is_dir():
            raise EnvironmentSetupError(f"Step working directory not found: {run_cwd}")

        full_env = dict(workspace.env)
        full_env.update(env or {})
        if workspace.toolchain:
            full_env["RUSTUP_TOOLCHAIN"] = workspace.toolchain

        logger.debug("exec %r in %s", command, run_cwd)
        start = time.monotonic()
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=str(run_cwd),
                env=full_env,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            out = e.output or ""
            if isinstance(out, bytes):
                out = out.decode(errors="replace")
            return CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                output=out + f"\n[matrixci] step timed out after {timeout:g}s\n",
                duration=time.monotonic() - start,
            )
        except OSError as e:
            raise EnvironmentSetupError(f"Could not start command: {e}", hint=TOOL_HINTS["sh"]) from e

        return CommandResult(
            exit_code=proc.returncode,
            output=proc.stdout or "",
            duration=time.monotonic() - start,
        )


def command_line(parts: List[str]) -> str:
    """Join non-empty command fragments."""
    return " ".join(p for p in parts if p)
