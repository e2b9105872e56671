# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .dsl import trigger
from .errors import WorkflowLoadError
from .model import Job, MatrixSpec, Pipeline, Step

# ----------------------------------------------------------------------
# YAML workflow schema (GitHub-Actions-shaped subset)
# ----------------------------------------------------------------------


def _str_map(values: Dict[str, Any]) -> Dict[str, str]:
    out = {}
    for k, v in values.items():
        if isinstance(v, bool):
            v = "true" if v else "false"
        out[str(k)] = "" if v is None else str(v)
    return out


class StepModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    id: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, Any] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")

    @model_validator(mode="after")
    def _run_or_uses(self) -> StepModel:
        if (self.run is None) == (self.uses is None):
            raise ValueError("a step needs exactly one of 'run' or 'uses'")
        return self

    def to_step(self) -> Step:
        if self.name:
            name = self.name
        elif self.uses is not None:
            name = self.uses
        else:
            name = (self.run or "").strip().splitlines()[0] if (self.run or "").strip() else "run"
        return Step(
            name=name,
            run=self.run,
            uses=self.uses,
            with_=_str_map(self.with_),
            env=_str_map(self.env),
            cwd=self.working_directory,
            id=self.id,
        )


class StrategyModel(BaseModel):
    # fail-fast / max-parallel are accepted and ignored
    model_config = ConfigDict(extra="ignore")

    matrix: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _no_exclude(self) -> StrategyModel:
        if "exclude" in self.matrix:
            raise ValueError("matrix 'exclude' is not supported; list the wanted combinations instead")
        return self

    def to_spec(self) -> MatrixSpec:
        axes = {
            k: tuple(v) if isinstance(v, list) else v
            for k, v in self.matrix.items()
            if k != "include"
        }
        include = self.matrix.get("include") or ()
        if isinstance(include, list):
            include = tuple(include)
        return MatrixSpec(axes=axes, include=include)


class JobModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    needs: Union[str, List[str]] = Field(default_factory=list)
    runs_on: Union[str, List[str]] = Field(default="local", alias="runs-on")
    env: Dict[str, Any] = Field(default_factory=dict)
    strategy: Optional[StrategyModel] = None
    needs_matrix: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="needs-matrix")
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)
    steps: List[StepModel] = Field(min_length=1)

    def to_job(self, key: str) -> Job:
        needs = [self.needs] if isinstance(self.needs, str) else list(self.needs)
        runs_on = self.runs_on if isinstance(self.runs_on, str) else ",".join(self.runs_on)
        return Job(
            name=key,
            steps=tuple(s.to_step() for s in self.steps),
            needs=tuple(needs),
            matrix=self.strategy.to_spec() if self.strategy and self.strategy.matrix else None,
            runs_on=runs_on,
            env=_str_map(self.env),
            display_name=self.name,
            needs_matrix=self.needs_matrix,
            timeout=self.timeout_minutes * 60 if self.timeout_minutes else None,
        )


class WorkflowModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    on: Any = None
    env: Dict[str, Any] = Field(default_factory=dict)
    jobs: Dict[str, JobModel] = Field(min_length=1)


def _on_to_trigger(on: Any):
    if on is None or isinstance(on, (str, list)):
        return trigger(on)
    if isinstance(on, dict):
        events: Dict[str, Any] = {}
        for tag, cfg in on.items():
            branches = cfg.get("branches") if isinstance(cfg, dict) else None
            if isinstance(branches, str):
                branches = [branches]
            events[tag] = branches
        return trigger(events)
    raise WorkflowLoadError(f"'on' must be an event name, a list or a mapping, got {type(on).__name__}")


def parse_workflow(data: Any, *, default_name: str = "workflow") -> Pipeline:
    """Validate an already-parsed YAML document and build the Pipeline."""
    if not isinstance(data, dict):
        raise WorkflowLoadError("Workflow YAML must be a mapping at the top level")
    data = dict(data)
    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in data and "on" not in data:
        data["on"] = data.pop(True)

    try:
        model = WorkflowModel.model_validate(data)
    except ValidationError as e:
        raise WorkflowLoadError(f"Invalid workflow: {e}") from e

    return Pipeline(
        name=model.name or default_name,
        jobs=tuple(jm.to_job(key) for key, jm in model.jobs.items()),
        trigger=_on_to_trigger(model.on),
        env=_str_map(model.env),
    )


def load_yaml_workflow(path: Path) -> Pipeline:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise WorkflowLoadError(f"YAML syntax error in {path.name}: {e}") from e
    return parse_workflow(data, default_name=path.stem)


# ----------------------------------------------------------------------
# Python workflow files
# ----------------------------------------------------------------------

def _as_pipeline(obj: Any, default_name: str) -> Pipeline:
    if isinstance(obj, Pipeline):
        return obj
    if isinstance(obj, (list, tuple)) and all(isinstance(j, Job) for j in obj):
        return Pipeline(name=default_name, jobs=tuple(obj))
    raise WorkflowLoadError(
        "Workflow must return/define a Pipeline or a List[Job]. "
        "Define workflow() -> Pipeline, PIPELINE = pipeline(...) or JOBS = [Job, ...]."
    )


def load_python_workflow(path: Path) -> Pipeline:
    """
    The file must define one of:
      - workflow() -> Pipeline | List[Job]
      - PIPELINE = Pipeline
      - JOBS = [Job, ...]
    """
    module_name = f"matrixci_workflow_{path.stem}"
    try:
        globals_dict = runpy.run_path(str(path), run_name=module_name)
    except Exception as e:
        raise WorkflowLoadError(f"{path.name} failed to execute: {type(e).__name__}: {e}") from e

    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            obj = globals_dict["workflow"]()
        except TypeError as e:
            if "takes 0 positional arguments" in str(e):
                raise WorkflowLoadError(
                    "Your workflow() is being called with arguments (name collision with a helper). "
                    "Use the 'wf' or 'pipeline' helper instead: `from matrixci import pipeline, job, sh` then "
                    "`def workflow(): return pipeline('ci', job(...), job(...))`"
                ) from e
            raise WorkflowLoadError(f"workflow() in {path.name} raised TypeError: {e}") from e
        except Exception as e:
            raise WorkflowLoadError(f"workflow() in {path.name} raised {type(e).__name__}: {e}") from e
    elif "PIPELINE" in globals_dict:
        obj = globals_dict["PIPELINE"]
    elif "JOBS" in globals_dict:
        obj = globals_dict["JOBS"]
    else:
        obj = None
    return _as_pipeline(obj, path.stem)


def load_workflow(path: str | Path) -> Pipeline:
    """Load a pipeline from a .py workflow file or a .yml/.yaml document."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".py":
        return load_python_workflow(wf_path)
    if wf_path.suffix in (".yml", ".yaml"):
        return load_yaml_workflow(wf_path)
    raise WorkflowLoadError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")
