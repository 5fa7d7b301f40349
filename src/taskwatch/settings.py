from __future__ import annotations
import os

TASKFILE = os.environ.get("TASKWATCH_TASKFILE")
DEBOUNCE_MS = int(os.environ.get("TASKWATCH_DEBOUNCE_MS", "200"))
KILL_GRACE_SECONDS = float(os.environ.get("TASKWATCH_KILL_GRACE", "5"))
SHELL = os.environ.get("TASKWATCH_SHELL", "/bin/sh")

DEFAULT_TASKFILES = ["taskwatch_tasks.py", "taskwatch.yaml", "taskwatch.yml"]

DEFAULT_IGNORES = [
    ".git/*",
    "*/.git/*",
    "target/*",
    "*/target/*",
    ".taskwatch/*",
    "*/__pycache__/*",
    "*.pyc",
    "*.DS_Store",
    "*~",
    "*.swp",
    "*.swx",
    "4913",  # vim probe file
    "*/4913",
]
