"""Platform-specific paths for persisted board state.

Goal: keep session state and logs in a per-user folder rather than the
working directory or the manifest's asset tree.

We intentionally avoid extra dependencies (e.g. platformdirs) and rely on
standard environment variables.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

APP_NAME = "BingoBuzz"
STATE_FILENAME = "state.json"


def is_windows() -> bool:
    return os.name == "nt"


def get_user_data_dir(app_name: str = APP_NAME) -> Path:
    """Return a persistent per-user data directory.

    Windows: %APPDATA%\\BingoBuzz
    Elsewhere: ~/.bingobuzz
    """
    if is_windows():
        base = os.getenv("APPDATA")
        if base:
            return Path(base) / app_name
        return Path.home() / "AppData" / "Roaming" / app_name

    return Path.home() / f".{app_name.lower()}"


def get_state_path(app_name: str = APP_NAME) -> Path:
    """Default location of the key/value session store."""
    return get_user_data_dir(app_name) / STATE_FILENAME


def ensure_dir(path: Path) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
