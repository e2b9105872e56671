# cli.py
from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import click

from matrixci import settings
from matrixci.actions import ActionRegistry, command_action, noop_action
from matrixci.errors import DefinitionError, WorkflowLoadError
from matrixci.git_facts.git import local_facts, repo_root
from matrixci.loader import load_workflow
from matrixci.model import Event, normalize_tag
from matrixci.scheduler import execute, plan
from matrixci.steps import StepRunner
from matrixci.ui.console import Console, get_console, set_console


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """
    Find all workflow files under `root`.

    Returns:
        Sorted list of candidate workflow paths
    """
    workflow_files = []

    default_workflow = root / settings.DEFAULT_WORKFLOW_FILE
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in root.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    gh_dir = root / ".github" / "workflows"
    if gh_dir.is_dir():
        workflow_files.extend(gh_dir.glob("*.yml"))
        workflow_files.extend(gh_dir.glob("*.yaml"))

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument, MATRIXCI_WORKFLOW or the current directory.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()
    workflow_arg = workflow_arg or settings.WORKFLOW

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix == "":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  matrixci run --workflow ci.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {settings.DEFAULT_WORKFLOW_FILE}",
                "  *_workflow.py",
                "  .github/workflows/*.yml",
            ],
            suggestion="Specify a workflow explicitly:\n  matrixci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  matrixci run --workflow {workflow_files[0]}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load_or_exit(ctx, workflow_path: Path):
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except (WorkflowLoadError, FileNotFoundError, TypeError, SyntaxError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)


def _parse_actions(specs: tuple[str, ...], skipped: tuple[str, ...]) -> ActionRegistry:
    registry = ActionRegistry()
    for spec in specs:
        name, sep, cmd = spec.partition("=")
        if not sep or not name or not cmd:
            raise click.BadParameter(f"expected NAME=COMMAND, got {spec!r}", param_hint="--action")
        registry.register(name.strip(), command_action(cmd))
    for ref in skipped:
        registry.register(ref, noop_action)
    return registry


def _default_repo_root() -> Path:
    try:
        return repo_root()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(".").resolve()


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: run a CI job graph with matrix fan-out locally."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml); discovered if omitted")
@click.option("--event", "event_tag", default="push", show_default=True, help="Event tag that triggers the run")
@click.option("--branch", default=None, help="Event branch (defaults to the checked-out branch)")
@click.option("--commit", default=None, help="Event commit (defaults to HEAD)")
@click.option("--workers", default=settings.WORKERS, type=int, help="Number of parallel units")
@click.option("--timeout", default=settings.TIMEOUT_SECONDS, type=float, help="Global pipeline timeout in seconds")
@click.option("--repo-root", default=None, type=click.Path(file_okay=False), help="Directory steps run in")
@click.option("--action", "actions", multiple=True, metavar="NAME=COMMAND", help="Run COMMAND for `uses: NAME` steps")
@click.option("--skip-action", "skipped_actions", multiple=True, metavar="NAME", help="Treat `uses: NAME` steps as no-ops")
@click.option("--secret", "secret_names", multiple=True, metavar="NAME", help="Forward env var NAME as ${{ secrets.NAME }}")
@click.option("--json-report", default=None, type=click.Path(dir_okay=False), help="Write the result as JSON")
@click.pass_context
def run(ctx, workflow, event_tag, branch, commit, workers, timeout, repo_root, actions,
        skipped_actions, secret_names, json_report):
    """Run a matrixci workflow."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    pipeline = _load_or_exit(ctx, workflow_path)

    try:
        registry = _parse_actions(actions, skipped_actions)
        if branch is None or commit is None:
            local_branch, local_commit = local_facts()
            branch = branch or local_branch
            commit = commit or local_commit
        event = Event(tag=normalize_tag(event_tag), branch=branch, commit=commit)
        secrets = {name: os.environ[name] for name in secret_names if name in os.environ}
        missing = [name for name in secret_names if name not in os.environ]
        if missing:
            console.print_debug(f"secrets not set in environment: {missing}")

        console.print_run_started(
            pipeline=pipeline.name,
            workflow=workflow_path.name,
            job_count=len(pipeline.jobs),
            event=event,
        )

        result = execute(
            pipeline,
            event,
            runner=StepRunner(registry, shell=settings.SHELL),
            repo_root=repo_root or _default_repo_root(),
            secrets=secrets,
            max_workers=workers,
            timeout=timeout,
            console=console,
        )

        if result.jobs:
            console.print_report(result)
        if json_report:
            Path(json_report).write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
            console.print_debug(f"wrote report to {json_report}")

        sys.exit(result.exit_code)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except click.ClickException:
        raise
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command("plan")
@click.option("--workflow", default=None, help="Workflow file (.py, .yml); discovered if omitted")
@click.pass_context
def plan_cmd(ctx, workflow):
    """Print batches and execution units without running anything."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    pipeline = _load_or_exit(ctx, workflow_path)
    try:
        batches, units = plan(pipeline)
    except DefinitionError as e:
        console.print_error("Invalid pipeline", str(e), details=[f"job: {n}" for n in e.jobs])
        sys.exit(1)
    console.print_plan(batches, {name: [u.id for u in us] for name, us in units.items()})


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml); discovered if omitted")
@click.pass_context
def validate(ctx, workflow):
    """Check the workflow loads and its job graph resolves."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    pipeline = _load_or_exit(ctx, workflow_path)
    try:
        batches, units = plan(pipeline)
    except DefinitionError as e:
        console.print_error("Invalid pipeline", str(e), details=[f"job: {n}" for n in e.jobs])
        sys.exit(1)
    total = sum(len(us) for us in units.values())
    console.print_info(f"OK: {len(pipeline.jobs)} job(s), {len(batches)} batch(es), {total} unit(s)")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
