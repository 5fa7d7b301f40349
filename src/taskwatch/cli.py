# cli.py
from __future__ import annotations

import signal
import sys
from pathlib import Path

import click

from taskwatch import settings
from taskwatch.errors import LoadError
from taskwatch.loader import load_tasks
from taskwatch.logging_setup import setup_logging
from taskwatch.model import EXIT_INTERRUPTED, WatchConfig
from taskwatch.registry import TaskRegistry, UnknownTask
from taskwatch.runner import RunHandle, run_task
from taskwatch.ui.console import Console, get_console, set_console
from taskwatch.watch import WatchLoop


def find_taskfiles(directory: Path = Path(".")) -> list[Path]:
    """
    Find all task files in a directory.

    Returns:
        List of Path objects for task files
    """
    return [directory / name for name in settings.DEFAULT_TASKFILES if (directory / name).exists()]


def discover_taskfile(taskfile_arg: str | None) -> Path:
    """
    Discover task file from argument, TASKWATCH_TASKFILE or the current directory.

    Raises:
        SystemExit: If no task file can be found or several exist
    """
    console = get_console()

    taskfile_arg = taskfile_arg or settings.TASKFILE
    if taskfile_arg:
        path = Path(taskfile_arg)
        if not path.exists():
            console.print_error(
                "Task file not found",
                f"Could not find task file: {taskfile_arg}",
                suggestion="Create a task file or specify a different path:\n  taskwatch --taskfile my_tasks.py list",
            )
            sys.exit(1)
        return path

    found = find_taskfiles()

    if len(found) == 0:
        console.print_error(
            "No task file found",
            "Could not find any task files.",
            details=["Looked for:", *(f"  {name}" for name in settings.DEFAULT_TASKFILES)],
            suggestion="Create a task file:\n  taskwatch_tasks.py\n\nOr specify one explicitly:\n  taskwatch --taskfile my_tasks.py list",
        )
        sys.exit(1)

    if len(found) > 1:
        console.print_error(
            "Multiple task files found",
            "Found multiple task files. Please specify which one to use:",
            details=[str(f) for f in found],
            suggestion=f"Specify one explicitly:\n  taskwatch --taskfile {found[0].name} list",
        )
        sys.exit(1)

    return found[0]


def load_registry(ctx: click.Context) -> TaskRegistry:
    """Load the task file once; a malformed file stops the process before anything runs."""
    console = get_console()
    path = discover_taskfile(ctx.obj.get("taskfile"))
    try:
        registry = load_tasks(path)
    except LoadError as e:
        console.print_error("Invalid task file", str(e))
        sys.exit(1)
    console.print_debug(f"Loaded {len(registry)} task(s) from {path}")
    return registry


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and diagnostic logs)",
)
@click.option("--taskfile", "-f", default=None, help="Task file path (defaults to taskwatch_tasks.py / taskwatch.yaml)")
@click.option("--quiet", "-q", is_flag=True, default=False, help="Do not echo commands before running them")
@click.pass_context
def cli(ctx, debug, taskfile, quiet):
    """taskwatch: run named tasks, or re-run them when files change."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    setup_logging(debug=debug)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["taskfile"] = taskfile


@cli.command(name="list")
@click.pass_context
def list_tasks(ctx):
    """List the tasks defined in the task file."""
    registry = load_registry(ctx)
    get_console().print_task_list(registry[name] for name in sorted(registry))


@cli.command()
@click.argument("task_name")
@click.pass_context
def run(ctx, task_name):
    """Run a task once and exit with its exit code."""
    console = get_console()
    registry = load_registry(ctx)

    try:
        task = registry.get_task(task_name)
    except UnknownTask as e:
        console.print_error("Unknown task", str(e))
        sys.exit(1)

    handle = RunHandle(task.name)
    # SIGTERM behaves like Ctrl+C: cancel the child, then exit
    signal.signal(signal.SIGTERM, signal.default_int_handler)
    console.print_task_started(task)
    try:
        result = run_task(task, handle=handle, echo=not console.quiet)
    except KeyboardInterrupt:
        # interrupted between steps; nothing left running
        handle.cancel("interrupted")
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)

    console.print_result(result, hint=result.hint)
    sys.exit(result.exit_code)


@cli.command()
@click.argument("task_name")
@click.option(
    "--path",
    "-p",
    "paths",
    multiple=True,
    help="Path or glob to watch (repeatable; defaults to the task's paths, else '.')",
)
@click.option(
    "--debounce",
    default=settings.DEBOUNCE_MS,
    type=click.IntRange(min=0),
    show_default=True,
    help="Quiet interval in milliseconds before re-running",
)
@click.option("--ignore", "-i", multiple=True, help="Extra glob to ignore (repeatable)")
@click.option("--initial-run/--no-initial-run", default=True, show_default=True, help="Run the task once at startup")
@click.pass_context
def watch(ctx, task_name, paths, debounce, ignore, initial_run):
    """Re-run a task whenever watched files change."""
    console = get_console()
    registry = load_registry(ctx)

    try:
        task = registry.get_task(task_name)
    except UnknownTask as e:
        console.print_error("Unknown task", str(e))
        sys.exit(1)

    config = WatchConfig(
        task=task.name,
        paths=tuple(paths) or task.paths or (".",),
        debounce=debounce / 1000.0,
        ignore=tuple(ignore),
        run_on_start=initial_run,
    )
    loop = WatchLoop(config, task, echo=not console.quiet)
    signal.signal(signal.SIGTERM, signal.default_int_handler)

    try:
        loop.run()
    except ValueError as e:
        console.print_error("Cannot watch", str(e))
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    sys.exit(0)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
