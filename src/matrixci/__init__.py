from .model import Event, Job, Step, MatrixSpec, Pipeline, Outcome, PipelineResult
from .scheduler import execute
from .trigger import should_run
from .matrix import expand
from .dag import resolve
from .steps import StepRunner
from .actions import ActionRegistry, command_action
from .dsl import job, sh, uses, matrix, wf, pipeline, JobBuilder, build

__all__ = [
    "job", "sh", "uses", "matrix", "wf", "pipeline", "JobBuilder", "build",
    "Event", "Job", "Step", "MatrixSpec", "Pipeline", "Outcome", "PipelineResult",
    "execute", "should_run", "expand", "resolve", "StepRunner", "ActionRegistry", "command_action",
]
