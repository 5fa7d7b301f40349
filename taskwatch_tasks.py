# taskwatch_tasks.py
# Tasks for a Rust service: cross-compile for a Raspberry Pi, or run locally
# and restart on every source change (`taskwatch watch dev`).
from __future__ import annotations

from taskwatch import tasks, task, sh

AARCH64 = "aarch64-unknown-linux-gnu"

TASKS = tasks(
    task(
        "build-rpi",
        sh(f"cargo build -r --target {AARCH64}", name="release build"),
        env={
            "CC_aarch64_unknown_linux_gnu": "aarch64-linux-gnu-gcc",
            "CXX_aarch64_unknown_linux_gnu": "aarch64-linux-gnu-g++",
            "AR_aarch64_unknown_linux_gnu": "aarch64-linux-gnu-ar",
            "CARGO_TARGET_AARCH64_UNKNOWN_LINUX_GNU_LINKER": "aarch64-linux-gnu-gcc",
        },
        description="Cross-compile a release build for ARM64 Linux",
    ),
    task(
        "dev",
        "cargo run",
        paths=["src", "Cargo.toml"],
        description="Build and run; use with `taskwatch watch dev`",
    ),
)
