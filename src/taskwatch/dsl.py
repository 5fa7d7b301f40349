# dsl.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Union

from .model import Step, Task


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(cmd: str, *, cwd: str | None = None, name: str | None = None) -> Step:
    """Create a shell step."""
    return Step(run=cmd, cwd=cwd, name=name)


StepLike = Union[Step, str]


def _as_step(s: StepLike) -> Step:
    return s if isinstance(s, Step) else sh(s)


# ---------------------------------------------------------------------
# Functional Task helper
# ---------------------------------------------------------------------

def task(
    name: str,
    *steps: StepLike,  # allow: task("x", sh(...), "plain command")
    env: Optional[Dict[str, str]] = None,
    description: str | None = None,
    cwd: str | None = None,
    paths: Optional[Iterable[str]] = None,
    timeout: float | None = None,
) -> Task:
    """
    Declare a task. Plain strings are turned into shell steps.

    Validation (empty names, empty commands, empty env keys) happens when the
    task file is loaded, so a bad declaration is reported with its source.
    """
    return Task(
        name=name,
        steps=tuple(_as_step(s) for s in steps),
        env={k: str(v) for k, v in (env or {}).items()},
        description=description,
        cwd=cwd,
        # a single pattern may be given as a plain string
        paths=(paths,) if isinstance(paths, str) else tuple(paths or ()),
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class TaskBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._description: str | None = None
        self._cwd: str | None = None
        self._paths: list[str] = []
        self._timeout: float | None = None

    def step(self, run: str, cwd: str | None = None, name: str | None = None):
        self._steps.append(Step(run=run, cwd=cwd, name=name))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def describe(self, text: str):
        self._description = text
        return self

    def in_dir(self, cwd: str):
        self._cwd = cwd
        return self

    def watch(self, *patterns: str):
        self._paths.extend(patterns)
        return self

    def timeout_after(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Task:
        return Task(
            name=self.name,
            steps=tuple(self._steps),
            env=dict(self._env),
            description=self._description,
            cwd=self._cwd,
            paths=tuple(self._paths),
            timeout=self._timeout,
        )


def build(name: str) -> TaskBuilder:
    """Convenience: build('dev').step('cargo run').build()"""
    return TaskBuilder(name)


# ---------------------------------------------------------------------
# Task file helper
# ---------------------------------------------------------------------

def tasks(*declared: Task) -> List[Task]:
    """
    Task file helper.

        from taskwatch import tasks, task, sh

        TASKS = tasks(
            task("build", "cargo build -r"),
            task("dev", "cargo run", paths=["src/**"]),
        )
    """
    return list(declared)
