# actions.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Mapping, Optional

from .model import Step

if TYPE_CHECKING:
    from .steps import UnitContext


# ---------------------------------------------------------------------
# Action calls
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ActionCall:
    """Everything a `uses:` handler gets: the step, resolved inputs and env."""
    step: Step
    inputs: Mapping[str, str]
    env: Mapping[str, str]
    cwd: Path
    context: "UnitContext"


# handler returns an exit status; None counts as 0
ActionHandler = Callable[[ActionCall], Optional[int]]


def _bare(ref: str) -> str:
    """actions/checkout@v3 -> actions/checkout"""
    return ref.split("@", 1)[0]


class ActionRegistry:
    """
    Maps `uses:` references to handlers.

    Lookup tries the full reference first, then the reference without its
    `@version`, so `register("actions/checkout", ...)` serves every version.
    """

    def __init__(self, handlers: Mapping[str, ActionHandler] | None = None):
        self._handlers: Dict[str, ActionHandler] = dict(handlers or {})

    def register(self, ref: str, handler: ActionHandler) -> ActionRegistry:
        self._handlers[ref] = handler
        return self

    def lookup(self, ref: str) -> ActionHandler | None:
        return self._handlers.get(ref) or self._handlers.get(_bare(ref))

    def __contains__(self, ref: str) -> bool:
        return self.lookup(ref) is not None

    def __len__(self) -> int:
        return len(self._handlers)


def input_env(inputs: Mapping[str, str]) -> Dict[str, str]:
    """`with:` inputs as INPUT_<NAME> variables (dashes/spaces -> underscores)."""
    return {
        "INPUT_" + k.upper().replace("-", "_").replace(" ", "_"): v
        for k, v in inputs.items()
    }


def command_action(cmd: str) -> ActionHandler:
    """
    Handler that runs a shell command for an action.

    Inputs are exported as INPUT_<NAME>, e.g.
        command_action('cargo clippy $INPUT_ARGS')
    """
    def handler(call: ActionCall) -> int:
        # Import here to avoid circular import
        from .steps import run_command

        env = dict(call.env)
        env.update(input_env(call.inputs))
        return run_command(cmd, cwd=call.cwd, env=env, context=call.context)

    return handler


def noop_action(call: ActionCall) -> int:
    call.context.emit(f"(skipped action {call.step.uses})")
    return 0
