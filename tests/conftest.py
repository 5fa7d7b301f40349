# tests/conftest.py

from __future__ import annotations

import threading

import pytest

from taskwatch.ui.console import Console, set_console


class LineSink:
    """Collects child output lines as (stream, line) pairs."""

    def __init__(self) -> None:
        self.lines: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def __call__(self, line: str, stream: str) -> None:
        with self._lock:
            self.lines.append((stream, line))

    def stdout(self) -> list[str]:
        return [line for stream, line in self.lines if stream == "stdout"]

    def stderr(self) -> list[str]:
        return [line for stream, line in self.lines if stream == "stderr"]


@pytest.fixture(autouse=True)
def console() -> Console:
    """Fresh quiet console per test so echo/banners don't leak between tests."""
    c = Console(quiet=True)
    set_console(c)
    return c


@pytest.fixture()
def sink() -> LineSink:
    return LineSink()
