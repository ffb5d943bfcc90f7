# actions.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List

from .environment import Environment, Workspace, command_line
from .errors import EnvironmentSetupError

# An action handler turns its parameters into shell commands. It may also
# adjust the workspace (e.g. select a toolchain for the following steps).
Handler = Callable[[Dict[str, str], Workspace, Environment], List[str]]


@dataclass(frozen=True)
class Action:
    """A versioned, closed contract: id, accepted parameters, behaviour."""
    id: str                                  # e.g. "actions-rs/cargo@v1"
    handler: Handler
    required: FrozenSet[str] = frozenset()
    optional: FrozenSet[str] = frozenset()

    def check_params(self, params: Dict[str, str]) -> None:
        missing = sorted(self.required - set(params))
        unknown = sorted(set(params) - self.required - self.optional)
        if missing or unknown:
            details = {}
            if missing:
                details["missing"] = ", ".join(missing)
            if unknown:
                details["unknown"] = ", ".join(unknown)
            raise EnvironmentSetupError(
                f"Invalid parameters for action '{self.id}'",
                details=details,
            )


def _truthy(value: str | None) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


# ----------------------------------------------------------------------
# Built-in actions
# ----------------------------------------------------------------------

def _checkout(params: Dict[str, str], ws: Workspace, env: Environment) -> List[str]:
    # the run's working directory *is* the checkout
    if not ws.workdir.is_dir():
        raise EnvironmentSetupError(f"Checkout directory not found: {ws.workdir}")
    return []


def _toolchain(params: Dict[str, str], ws: Workspace, env: Environment) -> List[str]:
    env.require_tool("rustup")
    toolchain = params["toolchain"]
    profile = params.get("profile")

    cmds = [command_line(["rustup toolchain install", toolchain, f"--profile {profile}" if profile else ""])]
    for component in (params.get("components") or "").replace(",", " ").split():
        cmds.append(f"rustup component add {component} --toolchain {toolchain}")

    if _truthy(params.get("override")):
        ws.toolchain = toolchain
    return cmds


def _cargo(params: Dict[str, str], ws: Workspace, env: Environment) -> List[str]:
    env.require_tool("cargo")
    toolchain = params.get("toolchain")
    return [command_line(["cargo", f"+{toolchain}" if toolchain else "", params["command"], params.get("args", "")])]


BUILTIN_ACTIONS = (
    Action("actions/checkout@v2", _checkout, optional=frozenset({"ref", "path", "fetch-depth", "submodules"})),
    Action(
        "actions-rs/toolchain@v1",
        _toolchain,
        required=frozenset({"toolchain"}),
        optional=frozenset({"profile", "override", "components", "default", "target"}),
    ),
    Action(
        "actions-rs/cargo@v1",
        _cargo,
        required=frozenset({"command"}),
        optional=frozenset({"args", "toolchain", "use-cross"}),
    ),
)


@dataclass
class ActionCatalog:
    """Registry of the actions steps may reference with `uses:`."""
    actions: Dict[str, Action] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "ActionCatalog":
        catalog = cls()
        for action in BUILTIN_ACTIONS:
            catalog.register(action)
        return catalog

    def register(self, action: Action) -> None:
        if "@" not in action.id:
            raise ValueError(f"Action id must be versioned (name@version): {action.id!r}")
        self.actions[action.id] = action

    def resolve(self, uses: str) -> Action:
        try:
            return self.actions[uses]
        except KeyError:
            name = uses.split("@", 1)[0]
            versions = sorted(a for a in self.actions if a.split("@", 1)[0] == name)
            raise EnvironmentSetupError(
                f"Unknown action '{uses}'",
                hint=f"available versions: {', '.join(versions)}" if versions else None,
            ) from None

    def __contains__(self, uses: str) -> bool:
        return uses in self.actions
