from .dsl import task, sh, tasks, TaskBuilder, build
from .env import resolve_env
from .loader import load_tasks
from .model import Task, Step, RunResult, RunStatus, WatchConfig
from .runner import run_task, RunHandle
from .watch import WatchLoop

__all__ = [
    "task", "sh", "tasks", "TaskBuilder", "build", "resolve_env", "load_tasks",
    "Task", "Step", "RunResult", "RunStatus", "WatchConfig", "run_task", "RunHandle", "WatchLoop",
]
