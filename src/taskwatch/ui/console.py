"""Console output formatting utilities for taskwatch."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, Optional

from ..model import RunResult, RunStatus, Task


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress command echo and per-run banners
        """
        self.debug = debug
        self.quiet = quiet
        # Child output arrives on reader threads; one lock keeps lines whole.
        self._lock = threading.Lock()

    def _emit(self, text: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            stream.write(text + "\n")
            stream.flush()

    def print_task_started(self, task: Task) -> None:
        if self.quiet:
            return
        self._emit(f"\nTASK STARTED: {task.name}")

    def print_command(self, task: str, index: int, cmd: str) -> None:
        """Echo a command line before it runs."""
        if self.quiet:
            return
        self._emit(f"[{task}] $ {cmd}", err=True)

    def print_output(self, line: str, stream: str = "stdout") -> None:
        """Write one complete line of child output."""
        self._emit(line, err=(stream == "stderr"))

    def print_result(self, result: RunResult, hint: Optional[str] = None) -> None:
        """Print the outcome of one task run."""
        if result.status is RunStatus.SUCCESS:
            self._emit(f"TASK {result.task}: success ({result.duration:.1f}s, {result.commands_run} command(s))")
            return
        if result.status is RunStatus.CANCELLED:
            self._emit(f"TASK {result.task}: cancelled ({result.reason or 'cancelled'}, {result.duration:.1f}s)")
            return

        lines = [f"TASK FAILED: {result.task}"]
        if result.failed_index is not None:
            lines.append(f"Step: {result.failed_index}")
        if result.command:
            lines.append(f"Command: {result.command}")
        if result.status is RunStatus.COMMAND_FAILURE:
            lines.append(f"Exit code: {result.returncode}")
        else:
            lines.append(f"Could not start: {result.reason}")
        if hint:
            lines.append(f"Hint: {hint}")
        self._emit("\n".join(lines), err=True)

    def print_task_list(self, tasks: Iterable[Task]) -> None:
        """Print the available tasks."""
        tasks = list(tasks)
        if not tasks:
            self._emit("No tasks defined.")
            return
        width = max(len(t.name) for t in tasks)
        self._emit("Available tasks:")
        for t in tasks:
            desc = f"  # {t.description}" if t.description else ""
            self._emit(f"  {t.name.ljust(width)}  ({len(t.steps)} step(s)){desc}")

    def print_watch_started(self, task: str, paths: Iterable[str], debounce: float) -> None:
        """Print watch loop start information."""
        self._emit("\nWATCH STARTED")
        self._emit(f"Task: {task}")
        self._emit(f"Paths: {', '.join(paths)}")
        self._emit(f"Debounce: {int(debounce * 1000)}ms")
        self._emit("Press Ctrl+C to stop.")

    def print_watch_state(self, state: str, detail: Optional[str] = None) -> None:
        """Print a watch loop state transition."""
        msg = f"[watch] {state}"
        if detail:
            msg += f": {detail}"
        self._emit(msg, err=True)

    def print_watch_summary(self, runs: int, failures: int, cancelled: int) -> None:
        self._emit(f"\nWATCH STOPPED: {runs} run(s), {failures} failed, {cancelled} cancelled")

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
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit("\n".join(lines), err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
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
