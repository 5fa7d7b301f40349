# registry.py
from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping

from .model import Task


class UnknownTask(KeyError):
    def __init__(self, name: str, known: List[str]):
        super().__init__(name)
        self.name = name
        self.known = known

    def __str__(self) -> str:
        return f"Unknown task '{self.name}'. Known tasks: {', '.join(self.known) or '(none)'}"


class TaskRegistry(Mapping[str, Task]):
    """
    Read-only mapping of task name -> Task.

    Built once by the loader; safe to share between the watch loop and direct
    invocations because nothing mutates it after construction.
    """

    def __init__(self, tasks: Iterable[Task] = ()):
        by_name: dict[str, Task] = {}
        for t in tasks:
            if t.name in by_name:
                raise ValueError(f"Duplicate task name: {t.name}")
            by_name[t.name] = t
        self._tasks = MappingProxyType(by_name)

    def __getitem__(self, name: str) -> Task:
        return self._tasks[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def get_task(self, name: str) -> Task:
        """Like [] but raises UnknownTask listing the known names."""
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTask(name, sorted(self._tasks)) from None

    def __repr__(self) -> str:
        return f"TaskRegistry({sorted(self._tasks)!r})"
