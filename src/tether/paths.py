"""Where tether keeps its files.

``TETHER_HOME`` puts config, state and logs under one directory; otherwise the
platform's per-user directories are used.
"""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "tether"
HOME_ENV = "TETHER_HOME"


def _resolve(kind: str) -> Path:
    override = os.getenv(HOME_ENV)
    if override:
        path = Path(override).expanduser() / kind
    else:
        path = Path(getattr(PlatformDirs(appname=APP_NAME, appauthor=False), f"user_{kind}_path"))
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_dir() -> Path:
    return _resolve("config")


def state_dir() -> Path:
    return _resolve("state")


def log_dir() -> Path:
    return _resolve("log")


def env_file() -> Path:
    return config_dir() / ".env"


def history_file() -> Path:
    """Prompt history for the REPL."""
    return state_dir() / "history"
