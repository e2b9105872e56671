# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .model import Job, MatrixSpec, Pipeline, Step, Trigger, normalize_tag


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    id: str | None = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=env or {}, id=id)


def uses(
    ref: str,
    *,
    name: str | None = None,
    with_: Optional[Dict[str, Any]] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,
    id: str | None = None,
) -> Step:
    """Create an action step, e.g. uses("actions/checkout@v3")."""
    inputs = {k: str(v) for k, v in (with_ or {}).items()}
    return Step(name=name or ref, uses=ref, with_=inputs, env=env or {}, cwd=cwd, id=id)


# ---------------------------------------------------------------------
# Matrix builder
# ---------------------------------------------------------------------

class Matrix:
    """
    Accumulates axes and explicit combinations, then flattens to a MatrixSpec.

    Example:
        matrix(os=["ubuntu", "windows"], toolchain=["stable"]).include(
            os="windows", toolchain="stable-gnu"
        )
    """
    def __init__(self, **axes: Iterable[Any]):
        self._axes: Dict[str, tuple] = {}
        self._include: List[Dict[str, Any]] = []
        for key, values in axes.items():
            self.axis(key, values)

    def axis(self, key: str, values: Iterable[Any]) -> Matrix:
        self._axes[key] = tuple(values)
        return self

    def include(self, combo: Optional[Mapping[str, Any]] = None, **values: Any) -> Matrix:
        entry = dict(combo or {})
        entry.update(values)
        self._include.append(entry)
        return self

    def build(self) -> MatrixSpec:
        return MatrixSpec(axes=dict(self._axes), include=tuple(self._include))


def matrix(**axes: Iterable[Any]) -> Matrix:
    return Matrix(**axes)


def _as_spec(m: Union[Matrix, MatrixSpec, Mapping[str, Any], None]) -> MatrixSpec | None:
    if m is None or isinstance(m, MatrixSpec):
        return m
    if isinstance(m, Matrix):
        return m.build()
    # plain mapping: {"os": [...], "include": [...]}
    axes = {k: v for k, v in m.items() if k != "include"}
    include = m.get("include") or ()
    return MatrixSpec(
        axes={k: tuple(v) if isinstance(v, (list, tuple)) else v for k, v in axes.items()},
        include=tuple(include),
    )


# ---------------------------------------------------------------------
# Functional Job helper (nice DX)
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[Sequence[str]] = None,
    matrix: Union[Matrix, MatrixSpec, Mapping[str, Any], None] = None,
    runs_on: str = "local",
    env: Optional[Dict[str, str]] = None,
    display_name: str | None = None,
    needs_matrix: Optional[Dict[str, Dict[str, Any]]] = None,
    timeout: float | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        matrix=_as_spec(matrix),
        runs_on=runs_on,
        env={k: str(v) for k, v in (env or {}).items()},
        display_name=display_name,
        needs_matrix={k: dict(v) for k, v in (needs_matrix or {}).items()},
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._runs_on: str = "local"
        self._matrix: Matrix | None = None
        self._display_name: str | None = None
        self._needs_matrix: dict[str, dict[str, Any]] = {}
        self._timeout: float | None = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def depends_on_units(self, job_name: str, **params: Any):
        """Only the units of `job_name` matching `params` have to succeed."""
        if job_name not in self._needs:
            self._needs.append(job_name)
        self._needs_matrix[job_name] = dict(params)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(sh(name, run, cwd=cwd))
        return self

    def use_action(self, ref: str, name: str | None = None, **inputs: Any):
        self._steps.append(uses(ref, name=name, with_=inputs))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def named(self, display_name: str):
        self._display_name = display_name
        return self

    def with_matrix(self, **axes: Iterable[Any]):
        self._matrix = Matrix(**axes)
        return self

    def include(self, **values: Any):
        if self._matrix is None:
            self._matrix = Matrix()
        self._matrix.include(**values)
        return self

    def timeout_after(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=tuple(self._steps),
            needs=tuple(self._needs),
            matrix=self._matrix.build() if self._matrix is not None else None,
            runs_on=self._runs_on,
            env=dict(self._env),
            display_name=self._display_name,
            needs_matrix=dict(self._needs_matrix),
            timeout=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helpers (single-file story)
# ---------------------------------------------------------------------

def trigger(on: Union[None, str, Sequence[str], Mapping[str, Any]] = None) -> Trigger:
    """
    on=None                       -> push + pull_request, any branch
    on=["push"]                   -> push, any branch
    on={"push": ["main", "release/*"], "pull_request": None}
    """
    if on is None:
        return Trigger()
    if isinstance(on, str):
        on = [on]
    if isinstance(on, Mapping):
        events: Dict[str, Optional[tuple]] = {}
        for tag, branches in on.items():
            events[normalize_tag(tag)] = tuple(branches) if branches else None
        return Trigger(events=events)
    return Trigger(events={normalize_tag(t): None for t in on})


def wf(*jobs: Job) -> List[Job]:
    """
    Workflow definition helper. Users can write:

        from matrixci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return list(jobs)


def pipeline(
    name: str,
    *jobs: Job,
    on: Union[None, str, Sequence[str], Mapping[str, Any]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """Like wf(), plus a name, trigger events and pipeline-wide env."""
    return Pipeline(
        name=name,
        jobs=tuple(jobs),
        trigger=trigger(on),
        env={k: str(v) for k, v in (env or {}).items()},
    )
