# scheduler.py
from __future__ import annotations

import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, List, Mapping, Tuple

from .dag import dependents_of, resolve
from .errors import CycleError, DefinitionError
from .expressions import interpolate, interpolate_map
from .matrix import expand, validate_matrix
from .model import (
    Event,
    ExecutionUnit,
    FailureReason,
    Job,
    JobResult,
    Outcome,
    Pipeline,
    PipelineResult,
    PipelineStatus,
    SkipReason,
    unit_id,
)
from .steps import StepRunner, UnitContext
from .trigger import should_run
from .ui.console import Console, get_console

# how long to wait for killed units to wind down after the deadline
CANCEL_GRACE_SECONDS = 5.0


# ----------------------------------------------------------------------
# Planning (pure, pre-execution)
# ----------------------------------------------------------------------

def validate(pipeline: Pipeline) -> List[List[str]]:
    """
    Resolve the job graph and check every matrix.
    Returns the batches; raises DefinitionError before anything runs.
    """
    batches = resolve(pipeline.jobs)
    for job in pipeline.jobs:
        validate_matrix(job.matrix, job=job.name)
        for need in job.needs_matrix:
            if need not in job.needs:
                raise DefinitionError(
                    f"Job '{job.name}' filters units of '{need}' but does not need it",
                    jobs=[job.name],
                )
    return batches


def _base_contexts(params: Mapping, event: Event | None, secrets: Mapping[str, str]) -> Dict[str, Mapping]:
    return {
        "matrix": params,
        "secrets": secrets,
        "event": {
            "tag": event.tag if event else None,
            "branch": event.branch if event else None,
            "commit": event.commit if event else None,
        },
    }


def expand_units(
    job: Job,
    event: Event | None = None,
    secrets: Mapping[str, str] | None = None,
) -> List[ExecutionUnit]:
    """One ExecutionUnit per matrix combination (exactly one for non-matrix jobs)."""
    units = []
    for params in expand(job.matrix):
        if job.display_name:
            ctx = _base_contexts(params, event, secrets or {})
            display = interpolate(job.display_name, ctx)
        else:
            display = unit_id(job.name, params)
        units.append(ExecutionUnit(job=job.name, params=params, display_name=display))
    return units


def plan(pipeline: Pipeline) -> Tuple[List[List[str]], Dict[str, List[ExecutionUnit]]]:
    batches = validate(pipeline)
    return batches, {j.name: expand_units(j) for j in pipeline.jobs}


def prerequisites_met(job: Job, results: Mapping[str, JobResult]) -> bool:
    """
    Job-level gate: every prerequisite job must have succeeded.

    With job.needs_matrix[prereq] set, only the prerequisite units matching
    that filter count (at least one must match, all matching must succeed).
    """
    for need in job.needs:
        jr = results[need]
        filt = job.needs_matrix.get(need)
        if filt:
            matching = [
                u for u in jr.units
                if all(u.params.get(k) == v for k, v in filt.items())
            ]
            if not matching or any(u.outcome is not Outcome.SUCCEEDED for u in matching):
                return False
        elif jr.outcome is not Outcome.SUCCEEDED:
            return False
    return True


# ----------------------------------------------------------------------
# Unit execution (runs on a worker thread)
# ----------------------------------------------------------------------

def _unit_env(pipeline: Pipeline, job: Job, unit: ExecutionUnit, event: Event | None, secrets: Mapping[str, str]) -> Dict[str, str]:
    env = os.environ.copy()
    ctx = dict(_base_contexts(unit.params, event, secrets))
    ctx["env"] = env
    env.update(interpolate_map(pipeline.env, ctx))
    env.update(interpolate_map(job.env, ctx))
    env["CI"] = "true"
    env["MATRIXCI_PIPELINE"] = pipeline.name
    env["MATRIXCI_JOB"] = job.name
    env["MATRIXCI_UNIT"] = unit.id
    env["MATRIXCI_RUNS_ON"] = interpolate(job.runs_on, ctx)
    for axis, value in unit.params.items():
        env["MATRIX_" + axis.upper().replace("-", "_")] = str(value)
    if event is not None and event.tag:
        env["MATRIXCI_EVENT"] = event.tag
    return env


class _UnitTask:
    """Runs one unit; terminal outcome is written under the shared lock, once."""

    def __init__(self, job: Job, context: UnitContext, runner: StepRunner, console: Console, lock: threading.Lock):
        self.job = job
        self.context = context
        self.runner = runner
        self.console = console
        self.lock = lock

    def __call__(self) -> Outcome:
        unit = self.context.unit
        with self.lock:
            if unit.outcome is not Outcome.PENDING:
                return unit.outcome
            unit.transition(Outcome.RUNNING)
        self.console.print_unit_start(unit, interpolate(self.job.runs_on, self.context.contexts()))

        timer = None
        if self.job.timeout:
            timer = threading.Timer(self.job.timeout, self.context.cancel)
            timer.daemon = True
            timer.start()
        try:
            outcome = self.runner.run(self.job.steps, self.context)
        except Exception as e:
            # a broken runner must not take the scheduler down
            unit.reason = FailureReason.INVOCATION_ERROR
            self.context.emit(f"unit crashed: {e}")
            outcome = Outcome.FAILED
        finally:
            if timer is not None:
                timer.cancel()

        with self.lock:
            if not unit.outcome.terminal:
                unit.transition(outcome)
        self.console.print_unit_result(unit)
        return unit.outcome


def _fail_timed_out(unit: ExecutionUnit, lock: threading.Lock) -> None:
    with lock:
        if not unit.outcome.terminal:
            unit.reason = FailureReason.TIMED_OUT
            unit.transition(Outcome.FAILED)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def execute(
    pipeline: Pipeline,
    event: Event | None,
    *,
    runner: StepRunner | None = None,
    repo_root: str | Path = ".",
    secrets: Mapping[str, str] | None = None,
    max_workers: int | None = None,
    timeout: float | None = None,
    console: Console | None = None,
) -> PipelineResult:
    """
    Scheduler + orchestrator:

    - Returns a NOT_TRIGGERED result if the event does not start the pipeline.
    - Resolves the job graph into batches; definition errors abort before
      any unit runs.
    - Runs every unit of a batch concurrently and waits for all of them
      before starting the next batch.
    - Skips jobs whose prerequisites did not succeed.
    - A global `timeout` (seconds) fails still-running units as timed out.
    """
    console = console or get_console()
    runner = runner or StepRunner()
    secrets = dict(secrets or {})
    repo_root_p = Path(repo_root).resolve()

    result = PipelineResult(pipeline=pipeline.name, status=PipelineStatus.NOT_TRIGGERED)
    if not should_run(event, pipeline.trigger):
        console.print_not_triggered(event)
        return result

    try:
        batches = validate(pipeline)
    except DefinitionError as e:
        stuck = set(e.stuck) if isinstance(e, CycleError) else set()
        for j in pipeline.jobs:
            reason = SkipReason.CYCLE if j.name in stuck else SkipReason.DEFINITION_ERROR
            result.jobs[j.name] = JobResult(j.name, skip_reason=reason)
        result.status = PipelineStatus.FAILED
        result.error = e
        console.print_error("Invalid pipeline", str(e), details=[f"job: {n}" for n in e.jobs])
        return result

    result.batches = batches
    by_name = {j.name: j for j in pipeline.jobs}
    dependents = dependents_of(pipeline.jobs)
    for j in pipeline.jobs:
        result.jobs[j.name] = JobResult(j.name)

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    deadline = time.monotonic() + timeout if timeout else None
    lock = threading.Lock()
    timed_out = False
    pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="matrixci")

    try:
        for level_idx, batch in enumerate(batches):
            console.print_batch(level_idx, batch)
            in_flight: Dict[Future, UnitContext] = {}

            for name in batch:
                job = by_name[name]
                jr = result.jobs[name]
                jr.units = expand_units(job, event, secrets)

                skip = None
                if timed_out:
                    skip = SkipReason.TIMED_OUT
                elif not prerequisites_met(job, result.jobs):
                    skip = SkipReason.PREREQUISITE_FAILED
                if skip is not None:
                    jr.skip_reason = skip
                    for unit in jr.units:
                        unit.transition(Outcome.SKIPPED, skip)
                    console.print_job_skipped(name, skip.value)
                    continue

                jr.dispatched = True
                for unit in jr.units:
                    ctx = UnitContext(
                        unit=unit,
                        repo_root=repo_root_p,
                        env=_unit_env(pipeline, job, unit, event, secrets),
                        secrets=secrets,
                        event=event,
                        emit=console.sink(unit.display_name),
                    )
                    fut = pool.submit(_UnitTask(job, ctx, runner, console, lock))
                    in_flight[fut] = ctx

            if not in_flight:
                continue

            # join barrier: block until every unit in the batch is terminal
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _done, pending = wait(in_flight, timeout=remaining)
            if pending:
                timed_out = True
                console.print_info(f"Pipeline timeout ({timeout}s) reached; cancelling {len(pending)} unit(s)")
                running: List[Future] = []
                for fut in pending:
                    ctx = in_flight[fut]
                    if fut.cancel():
                        _fail_timed_out(ctx.unit, lock)
                        console.print_unit_result(ctx.unit)
                    else:
                        ctx.cancel()
                        running.append(fut)
                _done, stragglers = wait(running, timeout=CANCEL_GRACE_SECONDS)
                for fut in stragglers:
                    _fail_timed_out(in_flight[fut].unit, lock)

            for name in batch:
                if result.jobs[name].outcome is Outcome.FAILED:
                    console.print_job_failed(name, sorted(dependents[name]))
    finally:
        pool.shutdown(wait=not timed_out, cancel_futures=True)

    failed = any(jr.outcome in (Outcome.FAILED, Outcome.SKIPPED) for jr in result.jobs.values())
    result.status = PipelineStatus.FAILED if failed else PipelineStatus.SUCCEEDED
    return result
