import pytest

from matrixci.dag import build_dag, dependents_of, resolve
from matrixci.errors import (
    CycleError,
    DefinitionError,
    DuplicateJobError,
    SelfReferenceError,
    UnknownReferenceError,
)
from matrixci.model import Job, Step

STEP = Step(name="noop", run="true")


def jobs_from(mapping):
    return [Job(name=name, steps=(STEP,), needs=tuple(needs)) for name, needs in mapping.items()]


GRAPHS = [
    {"a": []},
    {"a": [], "b": [], "c": []},
    {"a": [], "b": ["a"], "c": ["b"], "d": ["c"]},
    {"setup": [], "lint": ["setup"], "unit": ["setup"], "package": ["lint", "unit"], "e2e": ["package"]},
    {"x": ["y", "z"], "y": ["z"], "z": [], "w": []},
]


@pytest.mark.parametrize("graph", GRAPHS)
def test_prerequisites_always_in_earlier_batches(graph):
    batches = resolve(jobs_from(graph))

    position = {}
    for i, batch in enumerate(batches):
        for name in batch:
            assert name not in position
            position[name] = i
    assert set(position) == set(graph)

    for name, needs in graph.items():
        for need in needs:
            assert position[need] < position[name]


def test_batches_expose_maximal_parallelism():
    graph = {"a": [], "b": [], "c": ["a", "b"], "d": ["a"]}
    assert resolve(jobs_from(graph)) == [["a", "b"], ["c", "d"]]


def test_lint_build_coverage_order():
    graph = {"lint": [], "coverage": ["build"], "build": ["lint"]}
    assert resolve(jobs_from(graph)) == [["lint"], ["build"], ["coverage"]]


def test_two_job_cycle():
    with pytest.raises(CycleError) as exc:
        resolve(jobs_from({"a": ["b"], "b": ["a"], "c": []}))
    assert exc.value.jobs
    assert set(exc.value.jobs) <= {"a", "b"}
    assert exc.value.stuck == ["a", "b"]


def test_cycle_reports_only_cycle_members_in_jobs():
    graph = {"a": ["c"], "b": ["a"], "c": ["b"], "d": ["c"], "e": []}
    with pytest.raises(CycleError) as exc:
        resolve(jobs_from(graph))
    assert set(exc.value.jobs) == {"a", "b", "c"}
    assert "d" in exc.value.stuck
    assert "e" not in exc.value.stuck


def test_unknown_reference():
    with pytest.raises(UnknownReferenceError) as exc:
        resolve(jobs_from({"build": ["lint"]}))
    assert exc.value.missing == "lint"
    assert exc.value.jobs == ["build"]
    assert "build" in str(exc.value)


def test_self_reference():
    with pytest.raises(SelfReferenceError):
        resolve(jobs_from({"a": ["a"]}))


def test_duplicate_names():
    jobs = jobs_from({"a": []}) + jobs_from({"a": []})
    with pytest.raises(DuplicateJobError) as exc:
        build_dag(jobs)
    assert exc.value.jobs == ["a"]


def test_definition_errors_are_value_errors():
    with pytest.raises(ValueError):
        resolve(jobs_from({"a": ["b"], "b": ["a"]}))
    assert issubclass(CycleError, DefinitionError)


def test_reverse_index():
    deps = dependents_of(jobs_from({"lint": [], "build": ["lint"], "docs": ["lint"], "coverage": ["build"]}))
    assert deps["lint"] == {"build", "docs"}
    assert deps["build"] == {"coverage"}
    assert deps["coverage"] == set()


def test_repeated_need_counts_once():
    adj, indeg = build_dag(jobs_from({"a": [], "b": ["a", "a"]}))
    assert indeg["b"] == 1
    assert adj["a"] == {"b"}
