"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from matrixci.model import Event, ExecutionUnit, PipelineResult


class Console:
    """Centralized console output formatting (safe to call from worker threads)."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)
            stream.flush()

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        workflow: str,
        job_count: int,
        event: Optional["Event"] = None,
    ) -> None:
        """Print run start information."""
        lines = ["\nRUN STARTED", f"Pipeline: {pipeline}", f"Workflow: {workflow}", f"Jobs: {job_count}"]
        if event is not None:
            lines.append(f"Event: {event.tag} (branch={event.branch}, commit={event.commit})")
        self._out(*lines, "")

    def print_not_triggered(self, event: Optional["Event"]) -> None:
        tag = event.tag if event is not None else None
        self._out(f"NOT TRIGGERED: event {tag!r} does not start this pipeline")

    def print_batch(self, index: int, names: List[str]) -> None:
        self._out(f"\n=== Batch {index + 1}: {', '.join(names)} ===")

    def print_unit_start(self, unit: "ExecutionUnit", runs_on: str) -> None:
        self._out(f"UNIT STARTED: {unit.display_name} [{runs_on}]")

    def print_step_output(self, unit_id: str, line: str) -> None:
        """One streamed line of step output, prefixed by its unit."""
        self._out(f"[{unit_id}] {line}")

    def sink(self, unit_id: str) -> Callable[[str], None]:
        """Line sink bound to one unit."""
        return lambda line: self.print_step_output(unit_id, line)

    def print_unit_result(self, unit: "ExecutionUnit") -> None:
        status = unit.outcome.value.upper()
        if unit.reason is not None:
            status += f" ({unit.reason.value})"
        line = f"UNIT {status}: {unit.display_name}"
        if unit.duration is not None:
            line += f" in {unit.duration:.1f}s"
        self._out(line)

    def print_job_failed(self, name: str, blocked: List[str]) -> None:
        """Print a failed job and the jobs that directly need it."""
        line = f"JOB FAILED: {name}"
        if blocked:
            line += f" (blocks: {', '.join(blocked)})"
        self._out(line)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._out(f"JOB SKIPPED: {name} ({reason})")

    def print_plan(self, batches: List[List[str]], units: Dict[str, List[str]]) -> None:
        """Print batches and the units each job expands to."""
        self.print_header("PLAN")
        lines = []
        for i, batch in enumerate(batches):
            lines.append(f"Batch {i + 1}:")
            for name in batch:
                ids = units.get(name, [])
                lines.append(f"  {name} ({len(ids)} unit{'s' if len(ids) != 1 else ''})")
                for uid in ids:
                    if uid != name:
                        lines.append(f"    - {uid}")
        self._out(*lines)

    def print_report(self, result: "PipelineResult") -> None:
        """Print final results: every job and unit with its outcome."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for name, jr in result.jobs.items():
            head = f"  {name}: {jr.outcome.value.upper()}"
            if jr.skip_reason is not None:
                head += f" ({jr.skip_reason.value})"
            lines.append(head)
            for u in jr.units:
                if u.id == name and len(jr.units) == 1 and u.reason is None:
                    continue
                entry = f"    {u.id}: {u.outcome.value}"
                if u.reason is not None:
                    entry += f" ({u.reason.value})"
                if u.failed_step:
                    entry += f" at step '{u.failed_step}'"
                lines.append(entry)
        lines.append(f"PIPELINE: {result.status.value.upper()}")
        if result.error is not None:
            lines.append(f"Error: {result.error}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
