"""Console output formatting utilities for nativeci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from nativeci.runner import PipelineResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # jobs report from worker threads; keep multi-line blocks together
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        job_count: int,
        platform: str,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Repository: {repository}",
            f"Workflow: {workflow}",
            f"Platform: {platform}",
            f"Jobs: {job_count}",
            "",
        )

    def print_plan_job(self, name: str, reason: str) -> None:
        self._emit(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        self._emit(f"  {name} (not selected: {reason})")

    def print_job_start(self, name: str) -> None:
        self._emit(f"\nJOB STARTED: {name}")

    def print_attempt(self, name: str, attempt: int, total: int, cmd: str) -> None:
        self._emit(f"--- [{name}] attempt {attempt}/{total}: {cmd}")

    def print_retry(self, name: str, reason: str, retries_left: int) -> None:
        self._emit(f"[{name}] {reason}; retrying ({retries_left} left)")

    def print_success(self, name: str, attempts: int) -> None:
        suffix = f" after {attempts} attempts" if attempts > 1 else ""
        self._emit(f"[{name}] STATUS: success{suffix}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print job failure message.

        Args:
            name: Job label
            reason: Failure reason/error message
            exit_code: Optional exit code of the last attempt
            output: Optional tail of the last attempt's output
        """
        lines = [f"JOB FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        if output:
            lines.append(output.rstrip())
        self._emit(*lines)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._emit(f"\nJOB SKIPPED: {name}", f"STATUS: skipped ({reason})")

    def print_results(self, result: "PipelineResult") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for r in result.results:
            status = r.status.upper()
            if not r.job.gating:
                status += " (informational)"
            if r.job.skipped:
                status += f" ({r.job.skip})"
            lines.append(f"  {r.job.label}: {status}")
        lines.append("")
        lines.append(f"PIPELINE: {'PASSED' if result.passed else 'FAILED'}")
        self._emit(*lines)

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
        lines.extend(f"  {d}" for d in details or [])
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


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
