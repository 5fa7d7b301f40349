# runner.py
from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import IO, Callable, List, Mapping, Optional

from . import settings
from .env import resolve_env
from .errors import Cancelled, CommandFailure, SpawnFailure
from .model import RunResult, RunStatus, Step, Task
from .ui.console import get_console

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"

# (line, stream) where stream is "stdout" or "stderr"
OutputSink = Callable[[str, str], None]

TOOL_HINTS = {
    "cargo": "Install Rust via rustup (includes cargo) or fix PATH.",
    "rustup": "Install rustup from https://rustup.rs or fix PATH.",
    "aarch64-linux-gnu-gcc": "Install the AArch64 cross toolchain (e.g. apt install gcc-aarch64-linux-gnu).",
    "aarch64-linux-gnu-g++": "Install the AArch64 cross toolchain (e.g. apt install g++-aarch64-linux-gnu).",
    "aarch64-linux-gnu-ar": "Install binutils for AArch64 (e.g. apt install binutils-aarch64-linux-gnu).",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "python3": "Install Python 3 or fix PATH (python3).",
    "docker": "Install Docker and ensure the daemon is running.",
}

# Exit statuses a POSIX shell uses for "not executable" and "not found".
_SHELL_SPAWN_CODES = {
    126: "command not executable",
    127: "command not found",
}


def tool_hint(cmd: str) -> Optional[str]:
    """Hint for the program a command line starts with, if it is a known tool."""
    try:
        words = shlex.split(cmd)
    except ValueError:
        words = cmd.split()
    # skip leading VAR=value assignments
    for w in words:
        if "=" in w and not w.startswith("="):
            continue
        return TOOL_HINTS.get(os.path.basename(w))
    return None


# ----------------------------------------------------------------------
# Run handle
# ----------------------------------------------------------------------

class RunHandle:
    """
    One in-flight execution of a task.

    Owns the subprocess currently running for the task and the cancellation
    signal. `cancel()` may be called from any thread; it asks the running
    process group to terminate and escalates to SIGKILL after `kill_grace`.
    """

    def __init__(self, task: str = "", *, kill_grace: float | None = None):
        self.task = task
        self.kill_grace = settings.KILL_GRACE_SECONDS if kill_grace is None else kill_grace
        self.cancel_reason: Optional[str] = None
        self.result: Optional[RunResult] = None
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._done = threading.Event()
        self._proc: Optional[subprocess.Popen] = None
        self._kill_timer: Optional[threading.Timer] = None

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._cancel.is_set() or self._done.is_set():
                return
            self.cancel_reason = reason
            self._cancel.set()
            proc = self._proc
        logger.debug("cancel %s (%s)", self.task, reason)
        if proc is not None:
            self._terminate(proc)

    def wait(self, timeout: float | None = None) -> Optional[RunResult]:
        """Block until the run finished; returns its result (None on timeout)."""
        self._done.wait(timeout)
        return self.result

    # -- used by run_task ------------------------------------------------

    def _attach(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._proc = proc
            cancelled = self._cancel.is_set()
        if cancelled:
            # cancel() arrived between spawn and attach
            self._terminate(proc)

    def _detach(self) -> None:
        with self._lock:
            self._proc = None
            timer, self._kill_timer = self._kill_timer, None
        if timer is not None:
            timer.cancel()

    def _finish(self, result: RunResult) -> None:
        self._detach()
        self.result = result
        self._done.set()

    def _terminate(self, proc: subprocess.Popen) -> None:
        _signal_group(proc, signal.SIGTERM)
        timer = threading.Timer(self.kill_grace, self._kill, args=(proc,))
        timer.daemon = True
        with self._lock:
            if self._kill_timer is not None:
                self._kill_timer.cancel()
            self._kill_timer = timer
        timer.start()

    def _kill(self, proc: subprocess.Popen) -> None:
        if proc.poll() is None:
            logger.warning("[%s] pid %s ignored SIGTERM for %.1fs, killing", self.task, proc.pid, self.kill_grace)
            _signal_group(proc, getattr(signal, "SIGKILL", signal.SIGTERM))


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        if _POSIX:
            # the shell runs in its own session, so its pid is the group id
            os.killpg(proc.pid, sig)
        elif sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _pump(pipe: IO[str], stream: str, sink: OutputSink) -> None:
    with pipe:
        for line in iter(pipe.readline, ""):
            try:
                sink(line.rstrip("\r\n"), stream)
            except Exception:
                # keep draining so the child never blocks on a full pipe
                logger.exception("output sink failed")


def _run_step(
    task: Task,
    index: int,
    step: Step,
    handle: RunHandle,
    sink: OutputSink,
    base_dir: Path,
    ambient: Optional[Mapping[str, str]],
) -> None:
    cwd = (base_dir / (step.cwd or ".")).resolve()
    if not cwd.is_dir():
        raise SpawnFailure(task.name, index, step.run, f"working directory not found: {cwd}")

    env = resolve_env(ambient, task.env)

    try:
        proc = subprocess.Popen(
            step.run,
            shell=True,
            executable=settings.SHELL if _POSIX else None,
            cwd=str(cwd),
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            bufsize=1,
            start_new_session=_POSIX,
        )
    except OSError as e:
        raise SpawnFailure(task.name, index, step.run, e.strerror or str(e), hint=tool_hint(step.run)) from e

    logger.debug("[%s] step %d pid=%s cwd=%s", task.name, index, proc.pid, cwd)
    pumps: List[threading.Thread] = [
        threading.Thread(target=_pump, args=(proc.stdout, "stdout", sink), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, "stderr", sink), daemon=True),
    ]
    for t in pumps:
        t.start()
    handle._attach(proc)

    try:
        try:
            returncode = proc.wait()
        except KeyboardInterrupt:
            # the child runs in its own session and never saw the SIGINT
            handle.cancel("interrupted")
            returncode = proc.wait()
    finally:
        for t in pumps:
            # a backgrounded grandchild may hold the pipe open
            t.join(timeout=handle.kill_grace)
        handle._detach()

    logger.debug("[%s] step %d exited %s", task.name, index, returncode)

    if handle.cancelled:
        raise Cancelled(task.name, index, handle.cancel_reason or "cancelled")
    if returncode in _SHELL_SPAWN_CODES:
        raise SpawnFailure(
            task.name,
            index,
            step.run,
            f"{_SHELL_SPAWN_CODES[returncode]} (exit {returncode})",
            hint=tool_hint(step.run),
            returncode=returncode,
        )
    if returncode != 0:
        raise CommandFailure(task.name, index, step.run, returncode)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_task(
    task: Task,
    *,
    handle: Optional[RunHandle] = None,
    sink: Optional[OutputSink] = None,
    base_dir: str | Path = ".",
    echo: bool = True,
    ambient: Optional[Mapping[str, str]] = None,
) -> RunResult:
    """
    Run every step of `task` in order, stopping at the first failure.

    Output is streamed line by line to `sink` (the console by default).
    Failures and cancellation are reported in the returned RunResult, never
    raised. `handle` lets another thread cancel the run; one is created when
    not given. A task `timeout` cancels the handle with reason "timeout".
    """
    console = get_console()
    handle = handle or RunHandle(task.name)
    if not handle.task:
        handle.task = task.name
    sink = sink or console.print_output
    base = Path(base_dir).resolve()

    start = time.monotonic()
    executed = 0
    timer: Optional[threading.Timer] = None
    if task.timeout:
        timer = threading.Timer(task.timeout, handle.cancel, kwargs={"reason": "timeout"})
        timer.daemon = True
        timer.start()

    try:
        for index, step in enumerate(task.steps):
            if handle.cancelled:
                raise Cancelled(task.name, index, handle.cancel_reason or "cancelled")
            if echo:
                console.print_command(task.name, index, step.run)
            _run_step(task, index, step, handle, sink, base, ambient)
            executed += 1
        result = RunResult(
            task=task.name,
            status=RunStatus.SUCCESS,
            duration=time.monotonic() - start,
            commands_run=executed,
        )
    except CommandFailure as e:
        result = RunResult(
            task=task.name,
            status=RunStatus.COMMAND_FAILURE,
            duration=time.monotonic() - start,
            commands_run=executed + 1,
            failed_index=e.index,
            command=e.cmd,
            returncode=e.exit_code,
        )
    except SpawnFailure as e:
        result = RunResult(
            task=task.name,
            status=RunStatus.SPAWN_FAILURE,
            duration=time.monotonic() - start,
            commands_run=executed if e.returncode is None else executed + 1,
            failed_index=e.index,
            command=e.cmd,
            returncode=e.returncode,
            reason=e.reason,
            hint=e.hint,
        )
    except Cancelled as e:
        result = RunResult(
            task=task.name,
            status=RunStatus.CANCELLED,
            duration=time.monotonic() - start,
            commands_run=executed,
            failed_index=e.index,
            reason=e.reason,
        )
    finally:
        if timer is not None:
            timer.cancel()

    handle._finish(result)
    return result
