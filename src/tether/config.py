"""Engine configuration resolved from the environment and dotenv files."""

from __future__ import annotations

import contextlib
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from tether.paths import env_file

DEFAULT_WS_URL = "ws://127.0.0.1:3900/ws"
DEFAULT_AGENT = "claude"

# Byte size up to which attached files are embedded in the prompt.
INLINE_LIMIT_BYTES = 256 * 1024


def _timeout_s(env_name: str, default_s: float) -> float:
    """Read a millisecond timeout from env; non-positive or invalid values keep the default."""
    raw = os.getenv(env_name)
    if not raw:
        return default_s
    with contextlib.suppress(ValueError):
        value = int(raw)
        if value > 0:
            return value / 1000.0
    return default_s


@dataclass
class EngineConfig:
    connect_timeout_s: float = 120.0
    prompt_timeout_s: float = 60.0
    default_timeout_s: float = 15.0
    fs_timeout_s: float = 10.0
    open_timeout_s: float = 15.0
    mention_limit: int = 8
    ws_url: str = DEFAULT_WS_URL
    default_agent: str = DEFAULT_AGENT
    cwd: str = field(default_factory=os.getcwd)

    def timeout_for(self, operation: str) -> float:
        """Connect spawns a process and prompt waits for a whole turn; both get longer budgets."""
        if operation == "connect":
            return self.connect_timeout_s
        if operation == "prompt":
            return self.prompt_timeout_s
        return self.default_timeout_s


def load_config(*, dotenv_path: Path | None = None) -> EngineConfig:
    load_dotenv(dotenv_path or env_file(), override=False)
    load_dotenv()
    return EngineConfig(
        connect_timeout_s=_timeout_s("TETHER_ACP_CONNECT_TIMEOUT_MS", 120.0),
        prompt_timeout_s=_timeout_s("TETHER_ACP_PROMPT_TIMEOUT_MS", 60.0),
        default_timeout_s=_timeout_s("TETHER_ACP_DEFAULT_TIMEOUT_MS", 15.0),
        ws_url=os.getenv("TETHER_WS_URL") or DEFAULT_WS_URL,
        default_agent=os.getenv("TETHER_AGENT") or DEFAULT_AGENT,
    )
