# logging_setup.py

from __future__ import annotations

import logging
import sys


class _ThirdPartyFilter(logging.Filter):
    """Keep taskwatch logs; let other libraries (watchdog) through only at WARNING+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("taskwatch"):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(*, debug: bool = False) -> None:
    """
    Configure a single stderr handler.

    User-facing output goes through the Console; logging carries diagnostics
    (pids, signals, observer setup) and is quiet unless --debug is given.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S"))
    handler.addFilter(_ThirdPartyFilter())

    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.WARNING)
