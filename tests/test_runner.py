# tests/test_runner.py

from __future__ import annotations

import os
import threading
import time
from pathlib import Path

from taskwatch.dsl import sh, task
from taskwatch.model import RunResult, RunStatus
from taskwatch.runner import RunHandle, run_task, tool_hint


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_empty_task_succeeds_without_running_anything(sink) -> None:
    result = run_task(task("noop"), sink=sink, echo=False)

    assert result.ok
    assert result.commands_run == 0
    assert result.exit_code == 0
    assert sink.lines == []


def test_steps_run_in_order(sink) -> None:
    t = task("seq", "echo one", "echo two", "echo three")
    result = run_task(t, sink=sink, echo=False)

    assert result.status is RunStatus.SUCCESS
    assert result.commands_run == 3
    assert sink.stdout() == ["one", "two", "three"]


def test_stops_at_first_failing_step(sink) -> None:
    t = task("build", "echo A", "false", "echo B")
    result = run_task(t, sink=sink, echo=False)

    assert result.status is RunStatus.COMMAND_FAILURE
    assert result.task == "build"
    assert result.failed_index == 1
    assert result.command == "false"
    assert result.returncode == 1
    assert result.exit_code == 1
    assert sink.stdout() == ["A"]


def test_exit_code_of_failing_step_is_reported(sink, tmp_path: Path) -> None:
    marker = tmp_path / "marker"
    t = task("x", "exit 3", f"touch {marker}")
    result = run_task(t, sink=sink, echo=False)

    assert result.exit_code == 3
    assert not marker.exists()


def test_overlay_reaches_the_subprocess_only(sink, monkeypatch) -> None:
    monkeypatch.setenv("CC", "gcc")
    t = task("env", 'echo "$CC"', 'echo "$TASKWATCH_ONLY_IN_OVERLAY"', env={
        "CC": "gcc-arm",
        "TASKWATCH_ONLY_IN_OVERLAY": "yes",
    })
    result = run_task(t, sink=sink, echo=False)

    assert result.ok
    assert sink.stdout() == ["gcc-arm", "yes"]
    assert os.environ["CC"] == "gcc"
    assert "TASKWATCH_ONLY_IN_OVERLAY" not in os.environ


def test_stderr_is_streamed_separately(sink) -> None:
    result = run_task(task("err", "echo out; echo oops 1>&2"), sink=sink, echo=False)

    assert result.ok
    assert sink.stdout() == ["out"]
    assert sink.stderr() == ["oops"]


def test_step_cwd_is_relative_to_base_dir(sink, tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    t = task("cwd", sh("pwd", cwd="sub"), "pwd")
    result = run_task(t, sink=sink, base_dir=tmp_path, echo=False)

    assert result.ok
    assert [Path(p).resolve() for p in sink.stdout()] == [(tmp_path / "sub").resolve(), tmp_path.resolve()]


def test_missing_cwd_is_a_spawn_failure(sink, tmp_path: Path) -> None:
    t = task("cwd", sh("echo hi", cwd="does-not-exist"))
    result = run_task(t, sink=sink, base_dir=tmp_path, echo=False)

    assert result.status is RunStatus.SPAWN_FAILURE
    assert result.failed_index == 0
    assert "working directory not found" in result.reason
    assert result.exit_code == 127
    assert sink.lines == []


def test_unknown_program_is_a_spawn_failure_not_a_command_failure(sink) -> None:
    t = task("x", "echo before", "taskwatch-no-such-program --flag", "echo after")
    result = run_task(t, sink=sink, echo=False)

    assert result.status is RunStatus.SPAWN_FAILURE
    assert result.failed_index == 1
    assert result.command == "taskwatch-no-such-program --flag"
    assert "not found" in result.reason
    assert result.exit_code == 127
    assert "after" not in sink.stdout()


def test_shell_exit_127_after_running_keeps_its_exit_status(sink) -> None:
    result = run_task(task("x", "echo ran; exit 127"), sink=sink, echo=False)

    assert result.status is RunStatus.SPAWN_FAILURE
    assert result.returncode == 127
    assert result.commands_run == 1
    assert result.exit_code == 127
    assert sink.stdout() == ["ran"]


def test_output_is_streamed_while_the_command_runs() -> None:
    seen: list[tuple[str, float]] = []

    def timed_sink(line: str, stream: str) -> None:
        seen.append((line, time.monotonic()))

    result = run_task(task("slow", "echo first; sleep 1; echo second"), sink=timed_sink, echo=False)

    assert result.ok
    assert [line for line, _ in seen] == ["first", "second"]
    assert seen[1][1] - seen[0][1] >= 0.5


def test_duration_is_aggregate_wall_clock(sink) -> None:
    result = run_task(task("t", "sleep 0.2", "sleep 0.2"), sink=sink, echo=False)

    assert result.ok
    assert result.duration >= 0.4


def test_cancel_terminates_the_running_process_group(sink) -> None:
    t = task("long", "echo started; sleep 30", "echo never")
    handle = RunHandle("long", kill_grace=10)
    results: list[RunResult] = []
    runner = threading.Thread(target=lambda: results.append(run_task(t, handle=handle, sink=sink, echo=False)))

    started = time.monotonic()
    runner.start()
    assert _wait_for(lambda: "started" in sink.stdout())
    handle.cancel("superseded")
    runner.join(timeout=10)

    assert not runner.is_alive()
    # well under kill_grace: SIGTERM reached the sleep too, not just the shell
    assert time.monotonic() - started < 5
    result = results[0]
    assert result.status is RunStatus.CANCELLED
    assert result.reason == "superseded"
    assert result.failed_index == 0
    assert "never" not in sink.stdout()
    assert handle.wait(0) is result


def test_cancel_before_start_runs_nothing(sink) -> None:
    handle = RunHandle("t")
    handle.cancel()
    result = run_task(task("t", "echo hi"), handle=handle, sink=sink, echo=False)

    assert result.cancelled
    assert result.commands_run == 0
    assert sink.lines == []


def test_timeout_cancels_the_run(sink) -> None:
    t = task("slow", "sleep 30", timeout=0.3)
    started = time.monotonic()
    result = run_task(t, sink=sink, echo=False)

    assert time.monotonic() - started < 5
    assert result.status is RunStatus.CANCELLED
    assert result.reason == "timeout"
    assert result.exit_code == 124


def test_cancel_after_finish_is_a_no_op(sink) -> None:
    handle = RunHandle("t")
    result = run_task(task("t", "true"), handle=handle, sink=sink, echo=False)
    handle.cancel()

    assert result.ok
    assert not handle.cancelled


def test_tool_hints() -> None:
    assert "rustup" in tool_hint("cargo build -r --target aarch64-unknown-linux-gnu")
    assert tool_hint("CC=clang cargo run") == tool_hint("cargo run")
    assert tool_hint("/usr/bin/aarch64-linux-gnu-gcc -v") is not None
    assert tool_hint("echo hi") is None


def test_signal_deaths_map_to_shell_exit_codes() -> None:
    r = RunResult(task="t", status=RunStatus.COMMAND_FAILURE, returncode=-9)
    assert r.exit_code == 137
