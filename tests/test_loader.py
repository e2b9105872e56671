from pathlib import Path

import pytest

from matrixci.errors import WorkflowLoadError
from matrixci.loader import load_workflow, parse_workflow
from matrixci.model import Event
from matrixci.scheduler import expand_units, plan
from matrixci.trigger import should_run


ROOT = Path(__file__).parent.parent
FIXTURES = Path(__file__).parent / "fixtures"


def test_rust_yaml_workflow():
    p = load_workflow(FIXTURES / "rust.yml")

    assert p.name == "Rust"
    assert [j.name for j in p.jobs] == ["rustfmt-clippy", "coverage", "arch-test"]
    assert p.job("coverage").needs == ("arch-test",)
    assert p.job("arch-test").needs == ("rustfmt-clippy",)

    batches, units = plan(p)
    assert batches == [["rustfmt-clippy"], ["arch-test"], ["coverage"]]
    assert sum(len(us) for us in units.values()) == 10
    assert len(units["arch-test"]) == 8


def test_rust_yaml_matrix_display_names():
    arch = load_workflow(FIXTURES / "rust.yml").job("arch-test")
    names = [u.display_name for u in expand_units(arch)]
    assert names[:2] == ["ubuntu-latest-nightly", "ubuntu-latest-stable"]
    assert names[-2:] == ["windows-latest-nightly-gnu", "windows-latest-stable-gnu"]
    assert arch.runs_on == "${{matrix.os}}"


def test_rust_yaml_steps():
    p = load_workflow(FIXTURES / "rust.yml")
    lint = p.job("rustfmt-clippy")
    assert [s.name for s in lint.steps] == [
        "actions/checkout@v3",
        "Install stable",
        "Run rustfmt",
        "Run clippy",
    ]
    assert lint.steps[1].with_ == {"toolchain": "stable", "components": "clippy, rustfmt"}
    assert lint.steps[2].run.strip() == "cargo fmt --all -- --check"

    grcov = p.job("coverage").steps[2]
    assert grcov.env["GRCOV_VERSION"] == "0.8.7"
    mingw = p.job("coverage").steps[3]
    assert mingw.uses == "egor-tensin/setup-mingw@v2"
    assert mingw.with_ == {"platform": "x64", "cc": "false"}
    assert p.job("coverage").steps[4].id == "coverage"


def test_yaml_on_key_becomes_trigger():
    p = load_workflow(FIXTURES / "rust.yml")
    assert should_run(Event("push"), p.trigger)
    assert should_run(Event("pull-request"), p.trigger)
    assert not should_run(Event("release"), p.trigger)


def test_python_workflow_matches_yaml_shape():
    p = load_workflow(ROOT / "matrixci_workflow.py")
    batches, units = plan(p)
    assert batches == [["rustfmt-clippy"], ["arch-test"], ["coverage"]]
    assert len(units["arch-test"]) == 8
    assert p.job("coverage").needs_matrix == {"arch-test": {"os": "ubuntu-latest", "toolchain": "stable"}}

    yaml_steps = load_workflow(FIXTURES / "rust.yml").job("coverage").steps
    assert [s.name for s in p.job("coverage").steps] == [s.name for s in yaml_steps]


def test_python_jobs_list(tmp_path):
    path = tmp_path / "small_workflow.py"
    path.write_text(
        "from matrixci import job, sh, wf\n"
        "JOBS = wf(job('a', sh('a', 'true')), job('b', sh('b', 'true'), needs=['a']))\n"
    )
    p = load_workflow(path)
    assert p.name == "small_workflow"
    assert [j.name for j in p.jobs] == ["a", "b"]


def test_python_file_without_pipeline(tmp_path):
    path = tmp_path / "empty_workflow.py"
    path.write_text("X = 1\n")
    with pytest.raises(WorkflowLoadError):
        load_workflow(path)


def test_branch_filters_from_mapping():
    p = parse_workflow(
        {
            "on": {"push": {"branches": ["main", "release/*"]}, "pull_request": None},
            "jobs": {"a": {"steps": [{"run": "true"}]}},
        }
    )
    assert should_run(Event("push", branch="release/1.0"), p.trigger)
    assert not should_run(Event("push", branch="feature/x"), p.trigger)
    assert should_run(Event("pull_request", branch="anything"), p.trigger)


def test_run_step_name_defaults_to_first_line():
    p = parse_workflow({"jobs": {"a": {"steps": [{"run": "make\nmake test"}]}}}, default_name="wf")
    assert p.name == "wf"
    assert p.jobs[0].steps[0].name == "make"
    assert p.jobs[0].runs_on == "local"


def test_timeout_minutes():
    p = parse_workflow({"jobs": {"a": {"timeout-minutes": 2, "steps": [{"run": "true"}]}}})
    assert p.jobs[0].timeout == 120


@pytest.mark.parametrize(
    "data",
    [
        {"jobs": {"a": {"steps": [{"run": "true", "uses": "x/y@v1"}]}}},
        {"jobs": {"a": {"steps": [{"name": "nothing"}]}}},
        {"jobs": {"a": {"steps": []}}},
        {"jobs": {}},
        {"jobs": {"a": {"steps": [{"run": "true"}], "bogus": 1}}},
        {"jobs": {"a": {"strategy": {"matrix": {"os": ["x"], "exclude": [{"os": "x"}]}}, "steps": [{"run": "true"}]}}},
        ["not", "a", "mapping"],
    ],
)
def test_invalid_documents(data):
    with pytest.raises(WorkflowLoadError):
        parse_workflow(data)


def test_yaml_syntax_error(tmp_path):
    path = tmp_path / "broken.yml"
    path.write_text("jobs: [unclosed\n")
    with pytest.raises(WorkflowLoadError):
        load_workflow(path)


def test_unsupported_suffix(tmp_path):
    path = tmp_path / "ci.toml"
    path.write_text("")
    with pytest.raises(WorkflowLoadError):
        load_workflow(path)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "nope.yml")


def test_python_workflow_errors_become_load_errors(tmp_path):
    path = tmp_path / "broken_workflow.py"
    path.write_text(
        "from matrixci import pipeline, job, sh\n"
        "def workflow():\n"
        "    return pipeline('ci', job('a', sh('a', 'true')), job('b'))\n"
    )
    with pytest.raises(WorkflowLoadError) as info:
        load_workflow(path)
    assert isinstance(info.value.__cause__, ValueError)

    path.write_text("undefined_name\n")
    with pytest.raises(WorkflowLoadError) as info:
        load_workflow(path)
    assert isinstance(info.value.__cause__, NameError)
