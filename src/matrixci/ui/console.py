"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import Optional, TextIO


class Console:
    """Centralized console output formatting. Safe to call from job worker threads."""

    def __init__(self, debug: bool = False, verbose: bool = False, stream: Optional[TextIO] = None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            verbose: If True, echo every line a step prints
            stream: Where human-readable output goes (stdout by default;
                the CLI passes stderr when the JSON report owns stdout)
        """
        self.debug = debug
        self.verbose = verbose
        self.stream = stream
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        target = sys.stderr if err else (self.stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=target)

    def print_run_started(self, config: str, toolchains: list[str], fast_finish: bool) -> None:
        """Print run start information."""
        self._out(
            "",
            "RUN STARTED",
            f"Config: {config}",
            f"Toolchains: {', '.join(toolchains)}",
            f"Fast finish: {'yes' if fast_finish else 'no'}",
            "",
        )

    def print_plan_job(self, variant: str, required: bool, steps: int) -> None:
        """Print one row of the expanded matrix."""
        tag = "required" if required else "allowed to fail"
        self._out(f"  {variant} ({tag}, {steps} step(s))")

    def print_job_start(self, name: str) -> None:
        self._out(f"[{name}] JOB STARTED")

    def print_step(self, job: str, phase: str, index: int, command: str) -> None:
        self._out(f"[{job}] {phase}[{index}] ▶ {command}")

    def print_step_output(self, job: str, line: str) -> None:
        """Print one line of step output (verbose mode only)."""
        if self.verbose:
            self._out(f"[{job}] | {line}")

    def print_job_passed(self, name: str, duration: float) -> None:
        self._out(f"[{name}] ✓ passed ({duration:.1f}s)")

    def print_job_cancelled(self, name: str, reason: str) -> None:
        self._out(f"[{name}] - cancelled: {reason}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        allowed: bool = False,
    ) -> None:
        """
        Print job failure message.

        Args:
            name: Job name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            allowed: Job is allowed to fail, so this does not fail the run
        """
        prefix = "JOB FAILED (allowed)" if allowed else "JOB FAILED"
        lines = [f"[{name}] ✗ {prefix}: {reason}"]
        if exit_code is not None:
            lines.append(f"[{name}]   Exit code: {exit_code}")
        if hint:
            lines.append(f"[{name}]   Hint: {hint}")
        self._out(*lines)

    def print_cache_event(self, job: str, message: str) -> None:
        self._out(f"[{job}] CACHE: {message}")

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_results(self, rows: list[dict], verdict: str, outcome: str) -> None:
        """Print final results summary from report rows."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for row in rows:
            tag = "" if row["required"] else " (allowed to fail)"
            status = row["status"].upper()
            if row["discarded"]:
                status += ", DISCARDED"
            line = f"  {row['variant']}: {status}{tag}"
            failure = row.get("failure")
            if failure:
                line += f" at {failure['phase']}[{failure['step_index']}] ({failure['kind']})"
            lines.append(line)
        lines.append("-" * 40)
        lines.append(f"VERDICT: {verdict.upper()}")
        if outcome == "success_with_allowed_failures":
            lines.append("Some allowed-to-fail jobs failed; they do not affect the verdict.")
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
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
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
