# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class LoadError(Exception):
    """
    The task source is malformed.

    Raised while building the registry, before any task runs.
    """
    source: str
    message: str
    task: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        where = f"{self.source}"
        if self.task:
            where += f" (task '{self.task}')"
        lines = [f"{where}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class SpawnFailure(Exception):
    task: str
    index: int
    cmd: str
    reason: str
    hint: Optional[str] = None
    # set when the shell started and reported the failure itself
    returncode: Optional[int] = None

    def __str__(self) -> str:
        return f"[{self.task}] step {self.index} could not be started ({self.reason}): {self.cmd}"


@dataclass
class CommandFailure(Exception):
    task: str
    index: int
    cmd: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.task}] step {self.index} failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class Cancelled(Exception):
    task: str
    index: Optional[int] = None
    reason: str = "cancelled"

    def __str__(self) -> str:
        if self.index is None:
            return f"[{self.task}] {self.reason}"
        return f"[{self.task}] {self.reason} during step {self.index}"
