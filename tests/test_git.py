import subprocess
from pathlib import Path
from unittest.mock import patch

from matrixci.git_facts import git


def fake_git(outputs):
    def _check_output(args, **kwargs):
        return outputs[tuple(args[1:])] + "\n"
    return _check_output


def test_local_facts_on_a_branch():
    outputs = {
        ("rev-parse", "--abbrev-ref", "HEAD"): "main",
        ("rev-parse", "HEAD"): "0123abcd",
    }
    with patch("matrixci.git_facts.git.subprocess.check_output", side_effect=fake_git(outputs)):
        assert git.local_facts() == ("main", "0123abcd")


def test_detached_head_has_no_branch():
    with patch("matrixci.git_facts.git.subprocess.check_output", return_value="HEAD\n"):
        assert git.current_branch() is None


def test_outside_a_repository():
    error = subprocess.CalledProcessError(128, ["git", "rev-parse"])
    with patch("matrixci.git_facts.git.subprocess.check_output", side_effect=error):
        assert git.local_facts() == (None, None)


def test_git_not_installed():
    with patch("matrixci.git_facts.git.subprocess.check_output", side_effect=FileNotFoundError("git")):
        assert git.local_facts() == (None, None)


def test_repo_root():
    with patch("matrixci.git_facts.git.subprocess.check_output", return_value="/src/project\n") as co:
        assert git.repo_root(cwd="/src/project/sub") == Path("/src/project")
    assert co.call_args.kwargs["cwd"] == "/src/project/sub"
