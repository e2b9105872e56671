# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the JSON report
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Definition errors (detected before any unit is dispatched)
# ----------------------------------------------------------------------

class DefinitionError(ValueError):
    """A pipeline definition that cannot be executed at all."""

    def __init__(self, message: str, jobs: Iterable[str] = ()):
        super().__init__(message)
        self.jobs: List[str] = list(jobs)


class DuplicateJobError(DefinitionError):
    pass


class UnknownReferenceError(DefinitionError):
    def __init__(self, job: str, missing: str, known: Iterable[str]):
        super().__init__(
            f"Job '{job}' needs missing job '{missing}'. Known jobs: {sorted(known)}",
            jobs=[job],
        )
        self.missing = missing


class SelfReferenceError(DefinitionError):
    def __init__(self, job: str):
        super().__init__(f"Job '{job}' lists itself in needs", jobs=[job])


class CycleError(DefinitionError):
    """`jobs` is one concrete cycle; `stuck` is every job that could not be ordered."""

    def __init__(self, cycle: List[str], stuck: List[str]):
        path = " -> ".join(cycle + cycle[:1])
        super().__init__(f"Job graph has a cycle: {path}. Stuck jobs: {stuck}", jobs=cycle)
        self.stuck = stuck


class MatrixSpecError(DefinitionError):
    def __init__(self, job: str, message: str):
        super().__init__(f"Job '{job}' has a malformed matrix: {message}", jobs=[job])


class WorkflowLoadError(Exception):
    """The workflow file could not be read or does not describe a pipeline."""


# ----------------------------------------------------------------------
# Unit execution errors (contained to one execution unit)
# ----------------------------------------------------------------------

@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class StepInvocationError(CIError):
    """The step could not be started at all (missing cwd, bad shell, ...)."""


class ActionNotFound(StepInvocationError):
    def __init__(self, job: str, step: str, uses: str):
        super().__init__(
            kind="action_not_found",
            job=job,
            step=step,
            message=f"no handler registered for action '{uses}'",
            details={"uses": uses},
        )


class InvalidTransition(RuntimeError):
    def __init__(self, unit: str, current: str, new: str):
        super().__init__(f"unit '{unit}' cannot move from {current} to {new}")
