# loader.py
from __future__ import annotations

import runpy
from collections.abc import Hashable
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml
import yaml.constructor

from .dsl import task as make_task
from .dsl import sh
from .errors import LoadError
from .model import Step, Task
from .registry import TaskRegistry

_TASK_FIELDS = {"steps", "run", "env", "cwd", "description", "paths", "timeout"}
_STEP_FIELDS = {"run", "cwd", "name"}


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def load_tasks(path: str | Path) -> TaskRegistry:
    """
    Load and validate a task file.

    `.py` files must define either:
      - get_tasks() -> List[Task] | Mapping[str, dict]
      - TASKS = [Task, ...] or {name: {...}}

    `.yaml` / `.yml` files hold a mapping of task name -> definition:

        build-rpi:
          env:
            CC_aarch64_unknown_linux_gnu: aarch64-linux-gnu-gcc
          steps:
            - cargo build -r --target aarch64-unknown-linux-gnu

    Raises LoadError for anything malformed; nothing is run.
    """
    src = Path(path).expanduser().resolve()
    if not src.exists():
        raise LoadError(str(path), "task file not found")

    if src.suffix == ".py":
        declared = _read_python(src)
    elif src.suffix in (".yaml", ".yml"):
        declared = _read_yaml(src)
    else:
        raise LoadError(str(src), f"unsupported task file type '{src.suffix}' (use .py, .yaml or .yml)")

    if isinstance(declared, Mapping):
        task_list = [_task_from_mapping(str(src), name, body) for name, body in declared.items()]
    elif isinstance(declared, (list, tuple)):
        task_list = list(declared)
    else:
        raise LoadError(str(src), "task file must declare a list of tasks or a mapping of name -> task")

    return build_registry(task_list, source=str(src))


def build_registry(task_list: List[Any], *, source: str = "<tasks>") -> TaskRegistry:
    """Validate declared tasks and freeze them into a registry."""
    seen: set[str] = set()
    validated: List[Task] = []
    for t in task_list:
        if not isinstance(t, Task):
            raise LoadError(source, f"expected a Task, got {type(t).__name__}")
        t = _validate(source, t)
        if t.name in seen:
            raise LoadError(source, "duplicate task name", task=t.name)
        seen.add(t.name)
        validated.append(t)
    return TaskRegistry(validated)


# ----------------------------------------------------------------------
# Readers
# ----------------------------------------------------------------------

def _read_python(src: Path) -> Any:
    module_name = f"taskwatch_tasks_{src.stem}"
    try:
        globals_dict = runpy.run_path(str(src), run_name=module_name)
    except Exception as e:
        raise LoadError(str(src), f"task file raised {type(e).__name__}: {e}") from e

    if "get_tasks" in globals_dict and callable(globals_dict["get_tasks"]):
        try:
            return globals_dict["get_tasks"]()
        except Exception as e:
            raise LoadError(str(src), f"get_tasks() raised {type(e).__name__}: {e}") from e
    if "TASKS" in globals_dict:
        return globals_dict["TASKS"]
    raise LoadError(str(src), "define get_tasks() or TASKS in the task file")


class _DuplicateKey(yaml.constructor.ConstructorError):
    def __init__(self, key: Any, top_level: bool, mark: Any):
        super().__init__(None, None, f"duplicate key {key!r}", mark)
        self.key = key
        self.top_level = top_level


class _StrictLoader(yaml.SafeLoader):
    """SafeLoader that rejects repeated mapping keys instead of keeping the last one."""

    def construct_document(self, node):
        self._root = node
        return super().construct_document(node)

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen: set = set()
            for key_node, _value in node.value:
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=deep)
                if not isinstance(key, Hashable):
                    continue
                if key in seen:
                    raise _DuplicateKey(key, node is self._root, key_node.start_mark)
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _read_yaml(src: Path) -> Any:
    try:
        with src.open("r", encoding="utf-8") as fh:
            data = yaml.load(fh, Loader=_StrictLoader)
    except _DuplicateKey as e:
        if e.top_level:
            raise LoadError(str(src), "duplicate task name", task=str(e.key)) from e
        raise LoadError(str(src), f"duplicate key {e.key!r} on line {e.problem_mark.line + 1}") from e
    except yaml.YAMLError as e:
        raise LoadError(str(src), f"invalid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise LoadError(str(src), "top level must be a mapping of task name -> task")
    return data


def _task_from_mapping(source: str, name: Any, body: Any) -> Task:
    if not isinstance(name, str):
        raise LoadError(source, f"task names must be strings, got {name!r}")
    # `name: "single command"` and `name: [cmd, cmd]` shorthands
    if isinstance(body, (str, list)):
        body = {"steps": body if isinstance(body, list) else [body]}
    if body is None:
        body = {}
    if not isinstance(body, Mapping):
        raise LoadError(source, "task definition must be a mapping", task=name)

    unknown = set(body) - _TASK_FIELDS
    if unknown:
        raise LoadError(source, f"unknown field(s): {', '.join(sorted(map(str, unknown)))}", task=name)
    if "steps" in body and "run" in body:
        raise LoadError(source, "use either 'steps' or 'run', not both", task=name)

    raw_steps = body.get("steps", body.get("run", []))
    if isinstance(raw_steps, str):
        raw_steps = [raw_steps]
    if not isinstance(raw_steps, list):
        raise LoadError(source, "'steps' must be a list", task=name)

    env = body.get("env") or {}
    if not isinstance(env, Mapping):
        raise LoadError(source, "'env' must be a mapping", task=name)
    for k, v in env.items():
        if not isinstance(v, (str, int, float, bool)):
            raise LoadError(source, f"env value for {k!r} must be a scalar", task=name)

    paths = body.get("paths") or []
    if isinstance(paths, str):
        paths = [paths]
    if not isinstance(paths, list):
        raise LoadError(source, "'paths' must be a list", task=name)

    timeout = body.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
        raise LoadError(source, "'timeout' must be a number of seconds", task=name)

    return make_task(
        name,
        *[_step_from_raw(source, name, i, s) for i, s in enumerate(raw_steps)],
        env={k: _env_str(v) for k, v in env.items()},
        description=body.get("description"),
        cwd=body.get("cwd"),
        paths=paths,
        timeout=timeout,
    )


def _step_from_raw(source: str, task_name: str, index: int, raw: Any) -> Step:
    if isinstance(raw, str):
        return sh(raw)
    if isinstance(raw, Mapping):
        unknown = set(raw) - _STEP_FIELDS
        if unknown:
            raise LoadError(
                source,
                f"step {index}: unknown field(s): {', '.join(sorted(map(str, unknown)))}",
                task=task_name,
            )
        return Step(run=raw.get("run", ""), cwd=raw.get("cwd"), name=raw.get("name"))
    raise LoadError(source, f"step {index} must be a string or a mapping", task=task_name)


def _env_str(v: Any) -> str:
    if isinstance(v, bool):
        # YAML `true` -> "1", the way shells usually spell it
        return "1" if v else "0"
    return str(v)


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def _validate(source: str, t: Task) -> Task:
    if not isinstance(t.name, str) or not t.name.strip():
        raise LoadError(source, "task name must be a non-empty string")
    if t.name != t.name.strip() or any(c.isspace() for c in t.name):
        raise LoadError(source, "task name must not contain whitespace", task=t.name)

    if t.cwd is not None and not isinstance(t.cwd, str):
        raise LoadError(source, "cwd must be a string", task=t.name)

    steps = []
    for i, s in enumerate(t.steps):
        if not isinstance(s, Step):
            raise LoadError(source, f"step {i} is not a Step", task=t.name)
        if not isinstance(s.run, str) or not s.run.strip():
            raise LoadError(source, f"step {i} has an empty command line", task=t.name)
        if s.cwd is not None and not isinstance(s.cwd, str):
            raise LoadError(source, f"step {i} cwd must be a string", task=t.name)
        # task-level cwd is the default for steps without their own
        if s.cwd is None and t.cwd is not None:
            s = replace(s, cwd=t.cwd)
        steps.append(s)

    env: Dict[str, str] = {}
    for k, v in (t.env or {}).items():
        if not isinstance(k, str) or not k:
            raise LoadError(source, "env keys must be non-empty strings", task=t.name)
        if "=" in k or "\0" in k:
            raise LoadError(source, f"env key {k!r} is not a valid variable name", task=t.name)
        if not isinstance(v, str):
            raise LoadError(source, f"env value for {k!r} must be a string", task=t.name)
        env[k] = v

    if t.description is not None and not isinstance(t.description, str):
        raise LoadError(source, "description must be a string", task=t.name)
    if t.timeout is not None:
        if isinstance(t.timeout, bool) or not isinstance(t.timeout, (int, float)):
            raise LoadError(source, "timeout must be a number of seconds", task=t.name)
        if t.timeout <= 0:
            raise LoadError(source, "timeout must be positive", task=t.name)
    if isinstance(t.paths, str) or not isinstance(t.paths, (list, tuple)):
        raise LoadError(source, "watch paths must be a list of strings", task=t.name)
    for p in t.paths:
        if not isinstance(p, str) or not p:
            raise LoadError(source, "watch paths must be non-empty strings", task=t.name)

    return replace(t, steps=tuple(steps), env=env, paths=tuple(t.paths))
