# env.py
from __future__ import annotations

import os
from typing import Dict, Mapping, Optional


def resolve_env(
    ambient: Optional[Mapping[str, str]] = None,
    overlay: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Build the environment for one subprocess.

    Returns a fresh dict: `ambient` (os.environ when None) with every key in
    `overlay` replacing the ambient value. Neither input is modified, so each
    subprocess gets its own copy and the parent environment stays as it was.
    """
    if ambient is None:
        ambient = os.environ
    env = dict(ambient)
    env.update(overlay or {})
    return env
