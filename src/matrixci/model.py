# model.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import InvalidTransition


# ---------------------------------------------------------------------
# Definitions (immutable, built once at load time)
# ---------------------------------------------------------------------

def normalize_tag(tag: str) -> str:
    """`pull-request` and `pull_request` are the same event."""
    return tag.strip().lower().replace("-", "_")


@dataclass(frozen=True)
class Event:
    """A repository event (push, pull_request, ...) supplied by the caller."""
    tag: str | None
    branch: str | None = None
    commit: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> Event:
        """Build an Event from a raw mapping. Never raises; a missing tag stays None."""
        if not isinstance(data, Mapping):
            return cls(tag=None)
        tag = data.get("tag") or data.get("event")
        return cls(
            tag=normalize_tag(tag) if isinstance(tag, str) and tag.strip() else None,
            branch=data.get("branch"),
            commit=data.get("commit"),
            metadata={k: v for k, v in data.items() if k not in ("tag", "event", "branch", "commit")},
        )


@dataclass(frozen=True)
class Step:
    """
    A single step inside a CI job.

    Exactly one of `run` (inline shell command) or `uses` (external action
    reference, e.g. "actions/checkout@v3") is set.
    """
    name: str
    run: str | None = None
    uses: str | None = None
    with_: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None
    id: str | None = None

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise ValueError(f"step {self.name!r} must set exactly one of run= or uses=")

    @property
    def kind(self) -> str:
        return "action" if self.uses is not None else "sh"


@dataclass(frozen=True)
class MatrixSpec:
    """Axis name -> ordered values, plus extra combinations included verbatim."""
    axes: Mapping[str, Tuple[Any, ...]] = field(default_factory=dict)
    include: Tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True)
class Job:
    """
    A CI job: steps + dependencies + matrix + environment.

    `needs` holds the names of jobs that must fully succeed before any unit
    of this job is dispatched. `needs_matrix` narrows that requirement to the
    prerequisite units whose params match the given filter.
    """
    name: str
    steps: Tuple[Step, ...]
    needs: Tuple[str, ...] = ()
    matrix: MatrixSpec | None = None
    runs_on: str = "local"
    env: Mapping[str, str] = field(default_factory=dict)
    display_name: str | None = None
    needs_matrix: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    timeout: float | None = None


@dataclass(frozen=True)
class Trigger:
    """Event tag -> branch glob patterns (None = any branch)."""
    events: Mapping[str, Optional[Tuple[str, ...]]] = field(
        default_factory=lambda: {"push": None, "pull_request": None}
    )


@dataclass(frozen=True)
class Pipeline:
    name: str
    jobs: Tuple[Job, ...]
    trigger: Trigger = field(default_factory=Trigger)
    env: Mapping[str, str] = field(default_factory=dict)

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ---------------------------------------------------------------------
# Run-time records
# ---------------------------------------------------------------------

class Outcome(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (Outcome.SUCCEEDED, Outcome.FAILED, Outcome.SKIPPED)


class SkipReason(str, Enum):
    PREREQUISITE_FAILED = "prerequisite failed"
    CYCLE = "never scheduled due to cycle"
    DEFINITION_ERROR = "never scheduled due to definition error"
    TIMED_OUT = "pipeline timed out before dispatch"


class FailureReason(str, Enum):
    STEP_FAILED = "step failed"
    INVOCATION_ERROR = "step invocation error"
    TIMED_OUT = "timed out"


_TRANSITIONS = {
    Outcome.PENDING: {Outcome.RUNNING, Outcome.SKIPPED, Outcome.FAILED},
    Outcome.RUNNING: {Outcome.SUCCEEDED, Outcome.FAILED},
}


def unit_id(job: str, params: Mapping[str, Any]) -> str:
    if not params:
        return job
    inner = ", ".join(f"{k}={v}" for k, v in params.items())
    return f"{job} ({inner})"


@dataclass
class ExecutionUnit:
    """One concrete instantiation of a Job (one matrix combination)."""
    job: str
    params: Dict[str, Any]
    display_name: str
    outcome: Outcome = Outcome.PENDING
    reason: SkipReason | FailureReason | None = None
    failed_step: str | None = None
    exit_code: int | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def id(self) -> str:
        return unit_id(self.job, self.params)

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def transition(self, new: Outcome, reason: SkipReason | FailureReason | None = None) -> None:
        if new not in _TRANSITIONS.get(self.outcome, set()):
            raise InvalidTransition(self.id, self.outcome.value, new.value)
        self.outcome = new
        if reason is not None:
            self.reason = reason
        if new is Outcome.RUNNING:
            self.started_at = time.monotonic()
        elif new.terminal:
            self.finished_at = time.monotonic()

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "name": self.display_name,
            "params": dict(self.params),
            "outcome": self.outcome.value,
        }
        if self.reason is not None:
            d["reason"] = self.reason.value
        if self.failed_step is not None:
            d["failed_step"] = self.failed_step
        if self.exit_code is not None:
            d["exit_code"] = self.exit_code
        if self.duration is not None:
            d["duration"] = round(self.duration, 3)
        return d


@dataclass
class JobResult:
    """Aggregate over all units of one job."""
    job: str
    units: List[ExecutionUnit] = field(default_factory=list)
    dispatched: bool = False
    skip_reason: SkipReason | None = None

    @property
    def outcome(self) -> Outcome:
        if not self.dispatched:
            return Outcome.SKIPPED if self.skip_reason is not None else Outcome.PENDING
        if any(u.outcome is Outcome.FAILED for u in self.units):
            return Outcome.FAILED
        # zero units (empty matrix): nothing to run, vacuously succeeded
        if all(u.outcome is Outcome.SUCCEEDED for u in self.units):
            return Outcome.SUCCEEDED
        return Outcome.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "job": self.job,
            "outcome": self.outcome.value,
            "units": [u.to_dict() for u in self.units],
        }
        if self.skip_reason is not None:
            d["reason"] = self.skip_reason.value
        return d


class PipelineStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_TRIGGERED = "not_triggered"


EXIT_CODES = {
    PipelineStatus.SUCCEEDED: 0,
    PipelineStatus.FAILED: 1,
    PipelineStatus.NOT_TRIGGERED: 3,
}


@dataclass
class PipelineResult:
    pipeline: str
    status: PipelineStatus
    jobs: Dict[str, JobResult] = field(default_factory=dict)
    batches: List[List[str]] = field(default_factory=list)
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is PipelineStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]

    @property
    def failures(self) -> List[str]:
        """Identifiers of failing jobs and units, e.g. ['build', 'build (os=win)']."""
        out: List[str] = []
        for name, jr in self.jobs.items():
            if jr.outcome is Outcome.FAILED:
                out.append(name)
                out.extend(u.id for u in jr.units if u.outcome is Outcome.FAILED and u.id != name)
        return out

    def outcomes(self) -> Dict[str, Outcome]:
        return {name: jr.outcome for name, jr in self.jobs.items()}

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "pipeline": self.pipeline,
            "status": self.status.value,
            "batches": [list(b) for b in self.batches],
            "jobs": [jr.to_dict() for jr in self.jobs.values()],
            "failures": self.failures,
        }
        if self.error is not None:
            d["error"] = str(self.error)
        return d
