"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import Optional, TextIO

from ..model import JobResult, LegResult, PipelineResult, Status, TriggerEvent


_STATUS_MARK = {
    Status.SUCCESS: "✓",
    Status.FAILURE: "✗",
    Status.SKIPPED: "⏭",
    Status.CANCELLED: "⊘",
}


class Console:
    """Centralized console output formatting.

    Legs run on worker threads, so every write goes through one lock and
    per-leg lines are prefixed with the leg id.
    """

    def __init__(self, debug: bool = False, stream: Optional[TextIO] = None):
        """
        Args:
            debug: If True, show command output, tracebacks and debug lines
            stream: Where to write (defaults to stdout at call time)
        """
        self.debug = debug
        self._stream = stream
        self._lock = threading.Lock()

    def _out(self, text: str = "", err: bool = False) -> None:
        stream = self._stream or (sys.stderr if err else sys.stdout)
        with self._lock:
            print(text, file=stream)

    def print_header(self, title: str) -> None:
        self._out(f"\n{title}")
        self._out("-" * len(title))

    def print_run_started(self, pipeline: str, event: TriggerEvent, job_count: int, leg_count: int) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        self._out(f"Pipeline: {pipeline}")
        self._out(f"Event: {event.event_type} -> {event.target_branch}" + (f" @ {event.sha[:12]}" if event.sha else ""))
        self._out(f"Jobs: {job_count}  Legs: {leg_count}")
        self._out()

    def print_not_triggered(self, pipeline: str, event: TriggerEvent) -> None:
        self._out(f"Pipeline '{pipeline}' is not triggered by {event.event_type} on '{event.target_branch}'; nothing to run.")

    def print_leg_start(self, leg_id: str, environment: str) -> None:
        self._out(f"[{leg_id}] LEG STARTED on {environment}")

    def print_step(self, leg_id: str, name: str) -> None:
        self._out(f"[{leg_id}] ▶ {name}")

    def print_provisioned(self, leg_id: str, toolchain: str) -> None:
        self._out(f"[{leg_id}] toolchain: {toolchain}")

    def print_cache(self, leg_id: str, state: str, reason: str) -> None:
        self._out(f"[{leg_id}] cache: {state} ({reason})")

    def print_cache_saved(self, leg_id: str, key: str) -> None:
        short_key = key[:12] + "..." if len(key) > 12 else key
        self._out(f"[{leg_id}] cache: saved ({short_key})")

    def print_step_output(self, leg_id: str, output: str) -> None:
        if not output:
            return
        lines = "\n".join(f"[{leg_id}]   {line}" for line in output.rstrip().splitlines())
        self._out(lines)

    def print_leg_done(self, result: LegResult) -> None:
        mark = _STATUS_MARK[result.status]
        line = f"[{result.leg.id}] {mark} {result.status.value}"
        if result.error_kind:
            line += f" ({result.error_kind})"
        self._out(line)
        if result.error and result.status == Status.FAILURE:
            # first line only unless debugging
            self._out(f"[{result.leg.id}]   " + (result.error if self.debug else result.error.split("\n")[0]))

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._out(f"[{name}] ⏭ skipped ({reason})")

    def print_plan(self, stages: list[list[str]], legs: dict[str, list[str]]) -> None:
        for idx, stage in enumerate(stages, start=1):
            self._out(f"Stage {idx}:")
            for name in stage:
                self._out(f"  {name}")
                for leg in legs.get(name, []):
                    self._out(f"    - {leg}")

    def print_results(self, result: PipelineResult) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        for job in result.jobs.values():
            self._print_job(job)
        self._out(f"\nPIPELINE: {result.status.value.upper()}")

    def _print_job(self, job: JobResult) -> None:
        self._out(f"  {_STATUS_MARK[job.status]} {job.job}: {job.status.value.upper()}" + (f" ({job.reason})" if job.reason else ""))
        for lr in job.legs:
            if lr.leg.values:
                suffix = f" [{lr.error_kind}]" if lr.error_kind else ""
                self._out(f"      {_STATUS_MARK[lr.status]} {lr.leg.environment}: {lr.status.value}{suffix}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Print structured error message."""
        self._out(f"\nERROR: {title}", err=True)
        self._out(message, err=True)
        for detail in details or []:
            self._out(f"  {detail}", err=True)
        if suggestion:
            self._out(f"\n{suggestion}", err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(exc, file=self._stream or sys.stderr)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
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
