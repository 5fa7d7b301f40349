# tests/test_cli.py

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

from taskwatch import settings
from taskwatch.cli import cli


@pytest.fixture(autouse=True)
def no_taskfile_env(monkeypatch) -> None:
    monkeypatch.setattr(settings, "TASKFILE", None)


@pytest.fixture()
def taskfile(tmp_path: Path) -> Path:
    path = tmp_path / "taskwatch.yaml"
    path.write_text(textwrap.dedent("""
        build:
          description: the example from the docs
          steps:
            - echo A
            - "false"
            - echo B
        hello:
          env: {GREETING: hi}
          run: echo "$GREETING there"
        exit3: exit 3
        missing-tool: taskwatch-no-such-program
    """), encoding="utf-8")
    return path


def invoke(*args: str):
    return CliRunner().invoke(cli, list(args))


def test_list(taskfile: Path) -> None:
    result = invoke("--taskfile", str(taskfile), "list")

    assert result.exit_code == 0
    for name in ("build", "hello", "exit3", "missing-tool"):
        assert name in result.output
    assert "the example from the docs" in result.output


def test_run_success_streams_output(taskfile: Path) -> None:
    result = invoke("-q", "--taskfile", str(taskfile), "run", "hello")

    assert result.exit_code == 0
    assert "hi there" in result.output


def test_run_failure_exits_with_the_subprocess_code(taskfile: Path) -> None:
    result = invoke("-q", "--taskfile", str(taskfile), "run", "build")

    assert result.exit_code == 1
    assert "A" in result.output
    assert "B" not in result.output.split("TASK FAILED")[0].splitlines()
    assert "TASK FAILED: build" in result.output
    assert "Step: 1" in result.output

    assert invoke("-q", "--taskfile", str(taskfile), "run", "exit3").exit_code == 3


def test_run_spawn_failure_uses_reserved_code(taskfile: Path) -> None:
    result = invoke("-q", "--taskfile", str(taskfile), "run", "missing-tool")

    assert result.exit_code == 127
    assert "Could not start" in result.output


def test_commands_are_echoed_unless_quiet(taskfile: Path) -> None:
    result = invoke("--taskfile", str(taskfile), "run", "hello")

    assert result.exit_code == 0
    assert '[hello] $ echo "$GREETING there"' in result.output


def test_unknown_task(taskfile: Path) -> None:
    result = invoke("--taskfile", str(taskfile), "run", "nope")

    assert result.exit_code == 1
    assert "Unknown task" in result.output
    assert "build" in result.output


def test_malformed_taskfile_runs_nothing(tmp_path: Path) -> None:
    marker = tmp_path / "ran"
    path = tmp_path / "taskwatch.yaml"
    path.write_text(textwrap.dedent(f"""
        good: touch {marker}
        bad:
          steps: [""]
    """), encoding="utf-8")

    result = invoke("--taskfile", str(path), "run", "good")

    assert result.exit_code == 1
    assert "Invalid task file" in result.output
    assert not marker.exists()


def test_python_taskfile_is_discovered(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / "taskwatch_tasks.py").write_text(textwrap.dedent("""
        from taskwatch import tasks, task

        TASKS = tasks(task("hello", "echo from python"))
    """), encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    result = invoke("-q", "run", "hello")

    assert result.exit_code == 0
    assert "from python" in result.output


def test_no_taskfile(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    result = invoke("list")

    assert result.exit_code == 1
    assert "No task file found" in result.output


def test_ambiguous_taskfiles(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / "taskwatch.yaml").write_text("a: echo a\n")
    (tmp_path / "taskwatch.yml").write_text("b: echo b\n")
    monkeypatch.chdir(tmp_path)
    result = invoke("list")

    assert result.exit_code == 1
    assert "Multiple task files found" in result.output


def test_watch_rejects_unknown_task_and_missing_paths(taskfile: Path, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = invoke("--taskfile", str(taskfile), "watch", "nope")
    assert result.exit_code == 1
    assert "Unknown task" in result.output

    result = invoke("--taskfile", str(taskfile), "watch", "hello", "--path", "does-not-exist")
    assert result.exit_code == 1
    assert "Cannot watch" in result.output


def test_bad_timeout_in_python_taskfile_is_a_load_error(tmp_path: Path) -> None:
    path = tmp_path / "taskwatch_tasks.py"
    path.write_text(textwrap.dedent("""
        from taskwatch import tasks, task

        TASKS = tasks(task("slow", "echo hi", timeout="5"))
    """), encoding="utf-8")

    result = invoke("--taskfile", str(path), "run", "slow")

    assert result.exit_code == 1
    assert "Invalid task file" in result.output
    assert "timeout must be a number" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)
