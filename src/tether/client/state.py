"""UI-side state for the terminal client."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass


@dataclass
class ClientState:
    show_thinking: bool = True
    prompt_task: asyncio.Task | None = None

    @property
    def prompting(self) -> bool:
        return self.prompt_task is not None and not self.prompt_task.done()
