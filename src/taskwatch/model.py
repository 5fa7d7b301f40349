# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Step:
    """A single command line inside a task."""
    run: str
    cwd: str | None = None
    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.run


@dataclass(frozen=True)
class Task:
    """
    A named task: ordered steps sharing one environment overlay.

    `cwd` is the default working directory for steps that do not set one.
    `paths` are the default globs the watch loop observes for this task.
    `timeout` (seconds) cancels a run that takes longer.
    """
    name: str
    steps: Tuple[Step, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    description: str | None = None
    cwd: str | None = None
    paths: Tuple[str, ...] = ()
    timeout: float | None = None


class RunStatus(str, enum.Enum):
    SUCCESS = "success"
    COMMAND_FAILURE = "command_failure"
    SPAWN_FAILURE = "spawn_failure"
    CANCELLED = "cancelled"


# Exit codes for outcomes that have no subprocess exit code of their own.
EXIT_SPAWN_FAILURE = 127
EXIT_TIMEOUT = 124
EXIT_INTERRUPTED = 130


@dataclass(frozen=True)
class RunResult:
    """Outcome of one task execution."""
    task: str
    status: RunStatus
    duration: float = 0.0
    commands_run: int = 0
    failed_index: Optional[int] = None
    command: Optional[str] = None
    returncode: Optional[int] = None
    reason: Optional[str] = None
    hint: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status is RunStatus.CANCELLED

    @property
    def exit_code(self) -> int:
        """Process exit code for the `run` command."""
        if self.status is RunStatus.SUCCESS:
            return 0
        if self.status is RunStatus.SPAWN_FAILURE:
            return EXIT_SPAWN_FAILURE
        if self.status is RunStatus.CANCELLED:
            return EXIT_TIMEOUT if self.reason == "timeout" else EXIT_INTERRUPTED
        code = self.returncode if self.returncode is not None else 1
        if code < 0:
            # killed by signal -N, report it the way a shell does
            return 128 - code
        return code


@dataclass(frozen=True)
class WatchConfig:
    """What the watch loop observes and which task it re-invokes."""
    task: str
    paths: Tuple[str, ...] = (".",)
    debounce: float = 0.2
    ignore: Tuple[str, ...] = ()
    run_on_start: bool = True
