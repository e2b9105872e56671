from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from matrixci.actions import ActionRegistry
from matrixci.model import ExecutionUnit
from matrixci.steps import StepRunner, UnitContext
from matrixci.ui.console import Console

FIXTURES = Path(__file__).parent / "fixtures"


class Recorder:
    """In-process action handlers that record which unit ran which step, and when."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.started: dict[str, float] = {}
        self.finished: dict[str, float] = {}
        self._lock = threading.Lock()

    def handler(self, code: int = 0, delay: float = 0.0):
        def _handle(call):
            uid = call.context.unit.id
            with self._lock:
                self.calls.append((uid, call.step.name))
                self.started.setdefault(uid, time.monotonic())
            if delay:
                time.sleep(delay)
            with self._lock:
                self.finished[uid] = time.monotonic()
            if call.inputs.get("fail_on") and call.inputs.get("fail_on") == call.inputs.get("value"):
                return 1
            return code
        return _handle

    def units(self) -> set[str]:
        return {uid for uid, _ in self.calls}

    def steps_of(self, uid: str) -> list[str]:
        return [name for u, name in self.calls if u == uid]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def registry(recorder):
    reg = ActionRegistry()
    reg.register("test/ok", recorder.handler(0))
    reg.register("test/fail", recorder.handler(1))
    reg.register("test/slow", recorder.handler(0, delay=0.2))
    return reg


@pytest.fixture
def runner(registry):
    return StepRunner(registry)


@pytest.fixture
def console():
    return Console()


@pytest.fixture
def make_context(tmp_path):
    def _make(params=None, lines=None, env=None, secrets=None, job="j"):
        unit = ExecutionUnit(job=job, params=dict(params or {}), display_name=job)
        return UnitContext(
            unit=unit,
            repo_root=tmp_path,
            env=dict(os.environ) if env is None else env,
            secrets=secrets or {},
            emit=lines.append if lines is not None else (lambda line: None),
        )
    return _make
