# steps.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .actions import ActionCall, ActionRegistry
from .errors import ActionNotFound, StepFailure, StepInvocationError
from .expressions import interpolate, interpolate_map
from .model import Event, ExecutionUnit, FailureReason, Outcome, Step


# ----------------------------------------------------------------------
# Unit context (shared by every step of one execution unit)
# ----------------------------------------------------------------------

@dataclass
class UnitContext:
    """
    Read-only facts about one execution unit plus its cancel switch.

    Steps share nothing else: anything one step leaves for the next has to
    go through the filesystem under `repo_root`.
    """
    unit: ExecutionUnit
    repo_root: Path
    env: Dict[str, str] = field(default_factory=dict)
    secrets: Mapping[str, str] = field(default_factory=dict)
    event: Event | None = None
    emit: Callable[[str], None] = lambda line: None

    def __post_init__(self) -> None:
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._proc: subprocess.Popen | None = None

    @property
    def params(self) -> Dict[str, Any]:
        return self.unit.params

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def contexts(self, env: Mapping[str, str] | None = None) -> Dict[str, Mapping[str, Any]]:
        ev = self.event
        return {
            "matrix": self.unit.params,
            "env": env if env is not None else self.env,
            "secrets": self.secrets,
            "event": {
                "tag": ev.tag if ev else None,
                "branch": ev.branch if ev else None,
                "commit": ev.commit if ev else None,
            },
        }

    # ---- process tracking (so cancel() can kill the running step) ----

    def attach(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._proc = proc
        if self.cancelled:
            _kill(proc)

    def detach(self) -> None:
        with self._lock:
            self._proc = None

    def cancel(self) -> None:
        """Stop the unit: kill the running step and refuse to start new ones."""
        self._cancelled.set()
        with self._lock:
            proc = self._proc
        if proc is not None:
            _kill(proc)


def _kill(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except ProcessLookupError:
        pass


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def run_command(
    cmd: str,
    *,
    cwd: Path,
    env: Mapping[str, str],
    context: UnitContext,
    shell: str | None = None,
) -> int:
    """
    Run a shell command, streaming merged stdout/stderr to context.emit line by line.
    Returns the exit status.
    """
    try:
        proc = subprocess.Popen(
            cmd,
            shell=True,
            executable=shell,
            cwd=str(cwd),
            env=dict(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            bufsize=1,
            # own process group so cancel() reaches the whole command tree
            start_new_session=(os.name == "posix"),
        )
    except OSError as e:
        raise StepInvocationError(
            kind="spawn_failed",
            job=context.unit.job,
            step=None,
            message=str(e),
            details={"cmd": cmd},
        ) from e

    context.attach(proc)
    try:
        if proc.stdout is not None:
            for line in proc.stdout:
                context.emit(line.rstrip("\r\n"))
        return proc.wait()
    finally:
        context.detach()
        if proc.stdout is not None:
            proc.stdout.close()


class StepRunner:
    """
    Runs the ordered steps of one unit, stopping at the first failure.

    Records failed_step / exit_code / reason on the unit and returns
    Outcome.SUCCEEDED or Outcome.FAILED; it does not move the unit's outcome
    itself (the scheduler owns that).
    """

    def __init__(self, actions: ActionRegistry | None = None, *, shell: str | None = None):
        self.actions = actions or ActionRegistry()
        self.shell = shell

    def run(self, steps: Iterable[Step], context: UnitContext) -> Outcome:
        unit = context.unit
        for step in steps:
            if context.cancelled:
                unit.reason = FailureReason.TIMED_OUT
                return Outcome.FAILED

            env = dict(context.env)
            env.update(interpolate_map(step.env, context.contexts()))
            exprs = context.contexts(env)
            name = interpolate(step.name, exprs)

            context.emit(f"▶ {name}")
            try:
                code = self._run_step(step, name, env, exprs, context)
                if code != 0:
                    raise StepFailure(
                        job=unit.job,
                        step=name,
                        cmd=step.run if step.run is not None else f"uses: {step.uses}",
                        exit_code=code,
                    )
            except StepFailure as e:
                unit.failed_step = name
                unit.exit_code = e.exit_code
                unit.reason = FailureReason.TIMED_OUT if context.cancelled else FailureReason.STEP_FAILED
                context.emit(str(e))
                return Outcome.FAILED
            except Exception as e:
                unit.failed_step = name
                unit.reason = FailureReason.TIMED_OUT if context.cancelled else FailureReason.INVOCATION_ERROR
                context.emit(f"[{unit.job}] step '{name}' could not run: {e}")
                return Outcome.FAILED

            # an in-process handler can outlive the deadline and still return 0
            if context.cancelled:
                unit.failed_step = name
                unit.reason = FailureReason.TIMED_OUT
                context.emit(f"[{unit.job}] step '{name}' finished after the unit was cancelled")
                return Outcome.FAILED

        return Outcome.SUCCEEDED

    def _run_step(
        self,
        step: Step,
        name: str,
        env: Dict[str, str],
        exprs: Mapping[str, Mapping[str, Any]],
        context: UnitContext,
    ) -> int:
        cwd = (context.repo_root / interpolate(step.cwd or ".", exprs)).resolve()
        if not cwd.is_dir():
            raise StepInvocationError(
                kind="cwd_not_found",
                job=context.unit.job,
                step=name,
                message=f"working directory not found: {cwd}",
            )

        if step.uses is None:
            cmd = interpolate(step.run or "", exprs)
            return run_command(cmd, cwd=cwd, env=env, context=context, shell=self.shell)

        ref = interpolate(step.uses, exprs)
        handler = self.actions.lookup(ref)
        if handler is None:
            raise ActionNotFound(context.unit.job, name, ref)
        call = ActionCall(
            step=step,
            inputs=interpolate_map(step.with_, exprs),
            env=env,
            cwd=cwd,
            context=context,
        )
        code: Optional[int] = handler(call)
        return 0 if code is None else int(code)
