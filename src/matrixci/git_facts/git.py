# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to fill in the branch and commit of the triggering event
# when the caller does not pass them explicitly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero (e.g. not a repo)
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """
    Return the absolute path to the root of the current Git repository.

    Uses git itself as the source of truth rather than guessing based
    on filesystem layout.
    """
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    """
    Return the full SHA hash of the current HEAD commit.

    This becomes the `commit` of a locally built event.
    """
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Return the checked-out branch name, or None on a detached HEAD.
    """
    # `--abbrev-ref HEAD` prints "HEAD" when detached
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def local_facts(cwd: Optional[str] = None) -> tuple[Optional[str], Optional[str]]:
    """
    (branch, commit) of the local checkout, or (None, None) outside a repo.
    """
    try:
        return current_branch(cwd), head_sha(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None, None
