# watch.py
from __future__ import annotations

import enum
import logging
import os
import queue
import threading
import time
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Tuple

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from . import settings
from .model import RunResult, RunStatus, Task, WatchConfig
from .runner import RunHandle, run_task
from .ui.console import Console, get_console

logger = logging.getLogger(__name__)

# Opened / closed-without-write events fire whenever the task itself reads
# sources, so only content changes count.
_CONTENT_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}
_GLOB_CHARS = set("*?[")
_IDLE_POLL = 0.5

Runner = Callable[..., RunResult]


class WatchState(str, enum.Enum):
    IDLE = "Idle"
    DEBOUNCING = "Debouncing"
    RUNNING = "Running"
    CANCELLING = "Cancelling"


# ----------------------------------------------------------------------
# Path selection
# ----------------------------------------------------------------------

def _split_pattern(pattern: str, base: Path) -> Tuple[Path, Optional[str]]:
    """Split 'src/**/*.rs' into (base/src, '/abs/base/src/**/*.rs')."""
    p = Path(pattern).expanduser()
    parts = p.parts
    fixed: List[str] = []
    for part in parts:
        if _GLOB_CHARS & set(part):
            break
        fixed.append(part)
    root = (base / Path(*fixed)).resolve() if fixed else base
    if len(fixed) == len(parts):
        return root, None
    # joining an absolute pattern onto base yields the pattern itself
    return root, (base / p).as_posix()


class PathFilter:
    """
    Decides which changed paths matter.

    Plain entries match everything beneath them; glob entries are matched with
    fnmatch against the absolute path, so `*` also crosses directories.
    Ignore globs are matched against the path relative to `base`.
    """

    def __init__(self, paths: Iterable[str], ignore: Iterable[str], base: Path):
        self.base = base
        self.ignore = list(ignore)
        self.includes: List[Tuple[Path, Optional[str]]] = [_split_pattern(p, base) for p in paths]

    def roots(self) -> List[Tuple[Path, bool]]:
        """Directories to schedule on the observer, with their recursive flag."""
        out: List[Tuple[Path, bool]] = []
        for root, _glob in self.includes:
            if root.is_dir():
                entry = (root, True)
            elif root.exists():
                entry = (root.parent, False)
            else:
                logger.warning("watch path does not exist: %s", root)
                continue
            if entry not in out:
                out.append(entry)
        return out

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.base).as_posix()
        except ValueError:
            return path.as_posix()

    def matches(self, path: str) -> bool:
        p = Path(path)
        rel = self.relative(p)
        if any(fnmatch(rel, g) for g in self.ignore):
            return False
        for root, glob in self.includes:
            if glob is not None:
                # "src/**/*.rs" should also match "src/main.rs"
                if fnmatch(p.as_posix(), glob) or fnmatch(p.as_posix(), glob.replace("/**/", "/")):
                    return True
            elif p == root or root in p.parents:
                return True
        return False


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, path_filter: PathFilter, notify: Callable[[str], None]):
        super().__init__()
        self._filter = path_filter
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _CONTENT_EVENTS:
            return
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            # directory mtime bumps duplicate the file event
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if not raw:
                continue
            path = os.fsdecode(raw)
            if self._filter.matches(path):
                self._notify(path)
                return


# ----------------------------------------------------------------------
# Watch loop
# ----------------------------------------------------------------------

class WatchLoop:
    """
    Re-run one task whenever watched files change.

    A single control thread (the one calling `run()`) owns all state. File
    events (from the watchdog observer) and run completions (from the worker
    thread) are posted to one inbox queue and handled in arrival order:

      Idle       --change-->            Debouncing
      Debouncing --change-->            Debouncing (timer restarts)
      Debouncing --quiet interval-->    Running
      Running    --change-->            Cancelling -> Debouncing
      Running    --done-->              Idle

    A new run never starts before the previous one has been cancelled and
    awaited. `stop()` (or Ctrl+C) cancels and awaits the active run, then
    `run()` returns.
    """

    def __init__(
        self,
        config: WatchConfig,
        task: Task,
        *,
        runner: Optional[Runner] = None,
        console: Optional[Console] = None,
        base_dir: str | Path = ".",
        echo: bool = True,
        observe: bool = True,
    ):
        self.config = config
        self.task = task
        self.base = Path(base_dir).resolve()
        self.console = console or get_console()
        self._runner = runner or self._default_runner
        self._echo = echo
        self._observe = observe
        self._inbox: "queue.Queue[Tuple[str, Any]]" = queue.Queue()
        self._deadline: float = 0.0
        self._active: Optional[Tuple[RunHandle, threading.Thread]] = None
        self._observer: Optional[Any] = None

        self.state = WatchState.IDLE
        self.filter = PathFilter(config.paths, list(settings.DEFAULT_IGNORES) + list(config.ignore), self.base)
        self.results: List[RunResult] = []

    # -- public --------------------------------------------------------

    def notify(self, path: str = "") -> None:
        """Report a filesystem change. Safe to call from any thread."""
        self._inbox.put(("change", path))

    def stop(self) -> None:
        """Ask the loop to shut down. Safe to call from any thread."""
        self._inbox.put(("stop", None))

    @property
    def failures(self) -> int:
        return sum(1 for r in self.results if r.status in (RunStatus.COMMAND_FAILURE, RunStatus.SPAWN_FAILURE))

    @property
    def cancellations(self) -> int:
        return sum(1 for r in self.results if r.cancelled)

    def run(self) -> None:
        if self._observe:
            self._start_observer()
        self.console.print_watch_started(self.task.name, self.config.paths, self.config.debounce)
        try:
            if self.config.run_on_start:
                self._start_run()
            while True:
                msg = self._next_message()
                if msg is None:
                    self._start_run()
                    continue
                kind, payload = msg
                if kind == "stop":
                    break
                if kind == "change":
                    self._on_change(payload)
                elif kind == "done":
                    self._on_done(*payload)
        except KeyboardInterrupt:
            logger.debug("interrupted")
        finally:
            self._shutdown()

    # -- state machine -------------------------------------------------

    def _set_state(self, state: WatchState, detail: Optional[str] = None) -> None:
        if state is self.state:
            return
        logger.debug("state %s -> %s", self.state.value, state.value)
        self.state = state
        if state is not WatchState.CANCELLING:
            self.console.print_watch_state(state.value, detail)

    def _next_message(self) -> Optional[Tuple[str, Any]]:
        """Next inbox message, or None once the debounce interval has elapsed."""
        while True:
            if self.state is WatchState.DEBOUNCING:
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    return None
                timeout = remaining
            else:
                timeout = _IDLE_POLL
            try:
                return self._inbox.get(timeout=timeout)
            except queue.Empty:
                continue

    def _on_change(self, path: str) -> None:
        logger.debug("change: %s", path)
        if self.state is WatchState.RUNNING:
            self._set_state(WatchState.CANCELLING)
            self._cancel_active("superseded by a change")
        self._deadline = time.monotonic() + self.config.debounce
        self._set_state(WatchState.DEBOUNCING, self._display(path))

    def _on_done(self, handle: RunHandle, result: RunResult) -> None:
        if self._active is None or self._active[0] is not handle:
            # completion of a run that was already cancelled and reported
            return
        _handle, thread = self._active
        thread.join()
        self._active = None
        self._report(result)
        self._set_state(WatchState.IDLE)

    def _start_run(self) -> None:
        handle = RunHandle(self.task.name)
        thread = threading.Thread(
            target=self._worker,
            args=(handle,),
            name=f"taskwatch-run-{self.task.name}",
            daemon=True,
        )
        self._active = (handle, thread)
        self._set_state(WatchState.RUNNING, self.task.name)
        thread.start()

    def _worker(self, handle: RunHandle) -> None:
        try:
            result = self._runner(self.task, handle=handle)
        except Exception as e:
            logger.exception("runner crashed for task %s", self.task.name)
            result = RunResult(task=self.task.name, status=RunStatus.COMMAND_FAILURE, reason=str(e))
        if not handle.done:
            handle._finish(result)
        self._inbox.put(("done", (handle, result)))

    def _cancel_active(self, reason: str) -> None:
        if self._active is None:
            return
        handle, thread = self._active
        handle.cancel(reason)
        thread.join()
        self._active = None
        result = handle.result
        if result is not None:
            self._report(result)

    def _report(self, result: RunResult) -> None:
        self.results.append(result)
        if result.cancelled:
            self.console.print_watch_state("Cancelled", result.reason)
        self.console.print_result(result, hint=result.hint)

    def _shutdown(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._active is not None:
            self._set_state(WatchState.CANCELLING)
            self._cancel_active("shutdown")
        self.state = WatchState.IDLE
        self.console.print_watch_summary(len(self.results), self.failures, self.cancellations)

    # -- helpers -------------------------------------------------------

    def _default_runner(self, task: Task, *, handle: RunHandle) -> RunResult:
        return run_task(task, handle=handle, base_dir=self.base, echo=self._echo)

    def _start_observer(self) -> None:
        roots = self.filter.roots()
        if not roots:
            raise ValueError(f"None of the watch paths exist: {', '.join(self.config.paths)}")
        observer = Observer()
        handler = _ChangeHandler(self.filter, self.notify)
        for root, recursive in roots:
            logger.debug("observing %s (recursive=%s)", root, recursive)
            observer.schedule(handler, str(root), recursive=recursive)
        observer.start()
        self._observer = observer

    def _display(self, path: str) -> Optional[str]:
        if not path:
            return None
        return self.filter.relative(Path(path))
